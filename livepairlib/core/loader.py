#!/usr/bin/env python3

import os
import yaml
from livepairlib.core import errors

DEFAULT_STORAGE_ROOT = os.path.join("~", "Documents")
DEFAULT_STORAGE_DIRECTORY = "livepair.liveResource"
DEFAULT_LIBRARY_ROOT = os.path.join("~", "Pictures", "livepair")
DEFAULT_QUEUE_SIZE = 32

#============================================

class Settings():
	def __init__(self):
		self.yaml_file = None
		self.storage_root = os.path.expanduser(DEFAULT_STORAGE_ROOT)
		self.storage_directory = DEFAULT_STORAGE_DIRECTORY
		self.library_root = os.path.expanduser(DEFAULT_LIBRARY_ROOT)
		self.queue_size = DEFAULT_QUEUE_SIZE

	#============================
	def as_dict(self) -> dict:
		return {
			'storage': {'root': self.storage_root, 'directory': self.storage_directory},
			'muxer': {'queue_size': self.queue_size},
			'library': {'root': self.library_root},
		}

#============================================

class SettingsLoader():
	def __init__(self, yaml_file: str = None, storage_root: str = None):
		self.yaml_file = yaml_file
		self.storage_root = storage_root

	#============================
	def load(self) -> Settings:
		settings = Settings()
		if self.yaml_file is not None:
			settings.yaml_file = self.yaml_file
			data = self._load_yaml()
			self._validate_required_keys(data)
			self._parse_storage(settings, data.get('storage', {}))
			self._parse_muxer(settings, data.get('muxer', {}))
			self._parse_library(settings, data.get('library', {}))
		if self.storage_root is not None:
			settings.storage_root = os.path.expanduser(self.storage_root)
		return settings

	#============================
	def _load_yaml(self) -> dict:
		if not os.path.isfile(self.yaml_file):
			raise errors.ConfigError(f"config file not found: {self.yaml_file}")
		file_size = os.path.getsize(self.yaml_file)
		if file_size > 10 ** 6:
			raise errors.ConfigError("config file is larger than 1MB")
		with open(self.yaml_file, 'r') as data_file:
			try:
				data = yaml.safe_load(data_file)
			except yaml.YAMLError as error:
				raise errors.ConfigError(f"config file is not valid yaml: {error}") from error
		if data is None:
			data = {}
		if not isinstance(data, dict):
			raise errors.ConfigError("config must be a mapping at the top level")
		return data

	#============================
	def _validate_required_keys(self, data: dict) -> None:
		version = data.get('livepair', 1)
		if version != 1:
			raise errors.ConfigError("livepair must be set to 1")
		known_keys = ('livepair', 'storage', 'muxer', 'library')
		for key in data:
			if key not in known_keys:
				raise errors.ConfigError(f"unknown config key: {key}")

	#============================
	def _parse_storage(self, settings: Settings, storage: dict) -> None:
		if not isinstance(storage, dict):
			raise errors.ConfigError("storage must be a mapping")
		root = storage.get('root')
		if root is not None:
			settings.storage_root = os.path.expanduser(str(root))
		directory = storage.get('directory')
		if directory is not None:
			directory = str(directory)
			if directory == "" or os.sep in directory or directory in ('.', '..'):
				raise errors.ConfigError("storage.directory must be a plain directory name")
			settings.storage_directory = directory

	#============================
	def _parse_muxer(self, settings: Settings, muxer: dict) -> None:
		if not isinstance(muxer, dict):
			raise errors.ConfigError("muxer must be a mapping")
		queue_size = muxer.get('queue_size')
		if queue_size is None:
			return
		if isinstance(queue_size, bool) or not isinstance(queue_size, int):
			raise errors.ConfigError("muxer.queue_size must be an integer")
		if queue_size < 1:
			raise errors.ConfigError("muxer.queue_size must be at least 1")
		settings.queue_size = queue_size

	#============================
	def _parse_library(self, settings: Settings, library: dict) -> None:
		if not isinstance(library, dict):
			raise errors.ConfigError("library must be a mapping")
		root = library.get('root')
		if root is not None:
			settings.library_root = os.path.expanduser(str(root))
