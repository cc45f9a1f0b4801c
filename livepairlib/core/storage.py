#!/usr/bin/env python3

import logging
import os
import shutil

logger = logging.getLogger(__name__)

#============================================

class TemporaryStorage():
	"""
	Scoped directory holding the files of the live pair being built.

	Not safe for a flush racing a write from another request; callers
	serialize access.
	"""
	def __init__(self, root: str, directory: str):
		self.root = root
		self.directory = directory

	#============================
	@property
	def location(self) -> str:
		return os.path.join(self.root, self.directory)

	#============================
	def path(self) -> str:
		location = self.location
		if not os.path.isdir(location):
			os.makedirs(location, exist_ok=True)
			logger.debug("created temporary storage %s", location)
		return location

	#============================
	def entries(self) -> list:
		if not os.path.isdir(self.location):
			return []
		return sorted(os.listdir(self.location))

	#============================
	def flush(self) -> None:
		location = self.location
		for name in self.entries():
			entry = os.path.join(location, name)
			try:
				if os.path.isdir(entry) and not os.path.islink(entry):
					shutil.rmtree(entry)
				else:
					os.remove(entry)
			except FileNotFoundError:
				continue
			logger.debug("removed %s", entry)
