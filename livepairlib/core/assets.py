#!/usr/bin/env python3

import os
import typing
from livepairlib.core import utils

TEMPORARY_IMAGE_FILE_NAME = "live_resource.jpg"
TEMPORARY_MOVIE_FILE_NAME = "live_resource.mov"

#============================================

class FileAsset(typing.NamedTuple):
	identifier: str
	path: str

#============================================

class LiveAsset(typing.NamedTuple):
	identifier: str
	image_file: FileAsset
	movie_file: FileAsset

	#============================
	@classmethod
	def create(cls, directory: str, identifier: str = None) -> 'LiveAsset':
		if identifier is None:
			identifier = utils.make_identifier()
		image_path = os.path.join(directory, TEMPORARY_IMAGE_FILE_NAME)
		movie_path = os.path.join(directory, TEMPORARY_MOVIE_FILE_NAME)
		return cls(
			identifier=identifier,
			image_file=FileAsset(identifier, image_path),
			movie_file=FileAsset(identifier, movie_path),
		)

	#============================
	@property
	def file_paths(self) -> list:
		return [self.image_file.path, self.movie_file.path]

#============================================

class LivePhoto(typing.NamedTuple):
	identifier: str
	image_path: str
	movie_path: str
	size: tuple
