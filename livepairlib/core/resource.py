#!/usr/bin/env python3

"""
Live resource orchestration.

A LiveResource turns one still image and one movie into a tagged live pair
inside its temporary storage, asks the assembler to bind them, and can save
the held pair to a photo library. Requests run one at a time on a private
worker; each one starts by flushing the files of the previous request.
"""

import concurrent.futures
import logging
import threading
from livepairlib.core import assets
from livepairlib.core import convertible
from livepairlib.core import errors
from livepairlib.core import loader
from livepairlib.core import services
from livepairlib.core import storage
from livepairlib.core import utils
from livepairlib.core import validator
from livepairlib.media import jpeg_metadata
from livepairlib.media import mov_metadata

logger = logging.getLogger(__name__)

WORKER_THREAD_PREFIX = "livepair-live-resource"

#============================================

class LiveResource():
	def __init__(self, settings: loader.Settings = None,
		temporary_storage: storage.TemporaryStorage = None,
		assembler=None, library=None):
		if settings is None:
			settings = loader.Settings()
		self.settings = settings
		if temporary_storage is None:
			temporary_storage = storage.TemporaryStorage(settings.storage_root,
				settings.storage_directory)
		self.storage = temporary_storage
		if assembler is None:
			assembler = services.LivePhotoAssembler()
		self.assembler = assembler
		if library is None:
			library = services.DirectoryPhotoLibrary(settings.library_root)
		self.library = library
		self.asset = None
		self._lock = threading.Lock()
		self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1,
			thread_name_prefix=WORKER_THREAD_PREFIX)

	#============================
	def __enter__(self):
		return self

	#============================
	def __exit__(self, exc_type, exc_value, traceback) -> None:
		self.close()

	#============================
	def close(self) -> None:
		self._executor.shutdown(wait=True)

	#============================
	def request_with(self, image_resource, movie_resource, target_size,
		completion_handler=None) -> concurrent.futures.Future:
		"""
		Build a live pair from the two resources.

		Returns a future resolving to the assembled LivePhoto. When given,
		completion_handler is called as handler(live_photo, None) on success
		and handler(None, error) on failure.
		"""
		return self._executor.submit(self._run_request, image_resource,
			movie_resource, target_size, completion_handler)

	#============================
	def _run_request(self, image_resource, movie_resource, target_size,
		completion_handler):
		try:
			live_photo = self._request(image_resource, movie_resource, target_size)
		except Exception as error:
			logger.error("live resource request failed: %s", error)
			if completion_handler is not None:
				completion_handler(None, error)
			raise
		if completion_handler is not None:
			completion_handler(live_photo, None)
		return live_photo

	#============================
	def _request(self, image_resource, movie_resource, target_size) -> assets.LivePhoto:
		with self._lock:
			self._flush_storage()
			validator.validate_as_jpg(image_resource)
			validator.validate_as_mov(movie_resource)
			target_size = utils.parse_size(target_size)
			image_path = convertible.as_path(image_resource)
			movie_path = convertible.as_path(movie_resource)
			asset = assets.LiveAsset.create(self.storage.path())
			logger.info("building live pair %s", asset.identifier)
			# self.asset stays None unless every step succeeds
			jpeg_metadata.inject_to_file(image_path, asset.image_file)
			mov_metadata.inject_to_file(movie_path, asset.movie_file,
				queue_size=self.settings.queue_size)
			live_photo = self.assembler.request(asset.file_paths, target_size)
			if live_photo is None:
				raise errors.LiveRequestProblemError(asset.file_paths)
			self.asset = asset
			return live_photo

	#============================
	def _flush_storage(self) -> None:
		self.storage.flush()
		self.asset = None

	#============================
	def flush(self) -> None:
		"""
		Remove the files of the held pair and forget it.
		"""
		with self._lock:
			self._flush_storage()

	#============================
	def save(self, completion_handler=None) -> concurrent.futures.Future:
		"""
		Hand the held pair to the photo library.

		completion_handler, when given, receives None on success or the error.
		"""
		return self._executor.submit(self._run_save, completion_handler)

	#============================
	def _run_save(self, completion_handler):
		try:
			with self._lock:
				asset = self.asset
				if asset is None:
					raise errors.NothingToSaveError()
				saved_paths = self.library.add_live_photo(asset.identifier,
					asset.image_file.path, asset.movie_file.path)
		except Exception as error:
			if completion_handler is not None:
				completion_handler(error)
			raise
		if completion_handler is not None:
			completion_handler(None)
		return saved_paths
