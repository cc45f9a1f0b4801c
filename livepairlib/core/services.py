#!/usr/bin/env python3

"""
Default collaborators of the live resource: the service that binds the two
files into one live photo, and the library that keeps saved pairs.
"""

import logging
import os
import shutil
import struct
from livepairlib.core import assets
from livepairlib.core import convertible
from livepairlib.core import errors
from livepairlib.core import metadata
from livepairlib.core import utils
from livepairlib.media import jpeg_metadata
from livepairlib.media import mov_metadata
from livepairlib.media import quicktime

logger = logging.getLogger(__name__)

#============================================

class LivePhotoAssembler():
	"""
	Bind a tagged still image and movie into a LivePhoto.

	request() returns None when the two files do not carry the same
	content identifier, or when the movie lacks the pairing marker.
	"""

	#============================
	def request(self, file_paths: list, target_size: tuple):
		(image_path, movie_path) = file_paths
		image_identifier = jpeg_metadata.read_content_identifier(image_path)
		movie_identifier = mov_metadata.read_content_identifier(movie_path)
		if image_identifier is None or image_identifier != movie_identifier:
			logger.warning("content identifiers do not match: %s != %s",
				image_identifier, movie_identifier)
			return None
		if not self._has_pairing_marker(movie_path):
			logger.warning("no still image time marker in %s", movie_path)
			return None
		image = convertible.as_image(image_path)
		size = utils.aspect_fit(image.size, target_size)
		return assets.LivePhoto(
			identifier=image_identifier,
			image_path=os.path.abspath(image_path),
			movie_path=os.path.abspath(movie_path),
			size=size,
		)

	#============================
	def _has_pairing_marker(self, movie_path: str) -> bool:
		try:
			tracks = quicktime.read_metadata_tracks(movie_path)
		except (struct.error, quicktime.QuickTimeError) as error:
			logger.warning("could not read metadata tracks of %s: %s", movie_path, error)
			return False
		for track in tracks:
			for item in track['items']:
				if item.key == metadata.STILL_IMAGE_TIME_KEY:
					return True
		return False

#============================================

class DirectoryPhotoLibrary():
	"""
	Photo library backed by a plain directory.
	"""
	def __init__(self, root: str):
		self.root = root

	#============================
	def add_live_photo(self, identifier: str, image_path: str, movie_path: str) -> list:
		for file_path in (image_path, movie_path):
			try:
				utils.ensure_file_exists(file_path)
			except RuntimeError as error:
				raise errors.InvalidFilePathError(file_path) from error
		os.makedirs(self.root, exist_ok=True)
		saved_paths = []
		for file_path in (image_path, movie_path):
			extension = os.path.splitext(file_path)[1].lower()
			destination = os.path.join(self.root, identifier + extension)
			shutil.copy2(file_path, destination)
			saved_paths.append(destination)
		logger.info("saved live photo %s to %s", identifier, self.root)
		return saved_paths
