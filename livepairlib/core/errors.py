#!/usr/bin/env python3

LIBRARY_NAME = "livepair"

#============================================

class LivePairError(RuntimeError):
	def __init__(self, description: str):
		super().__init__(description)
		self.description = description

	#============================
	def __str__(self) -> str:
		return f"[{LIBRARY_NAME}] {self.description}"

#============================================

class NothingToSaveError(LivePairError):
	def __init__(self):
		super().__init__("There's nothing to save")

#============================================

class LiveRequestProblemError(LivePairError):
	def __init__(self, file_paths: list):
		self.file_paths = list(file_paths)
		super().__init__("Couldn't create live resource with paths:\n"
			+ "\n".join(self.file_paths))

#============================================

class InvalidImageSourceError(LivePairError):
	def __init__(self, image_source):
		self.image_source = image_source
		super().__init__(f"Couldn't retrieve image from:\n{image_source}")

#============================================

class InvalidFilePathError(LivePairError):
	def __init__(self, file_path):
		self.file_path = file_path
		super().__init__(f"Couldn't retrieve file from:\n{file_path}")

#============================================

class InvalidFileTypeError(LivePairError):
	def __init__(self, file_path, expected_type: str):
		self.file_path = file_path
		self.expected_type = expected_type
		super().__init__(f"Couldn't validate as \"{expected_type}\" file at:\n{file_path}")

#============================================

class InvalidFileError(LivePairError):
	def __init__(self, file_path: str):
		self.file_path = file_path
		super().__init__(f"Invalid file at:\n{file_path}")

#============================================

class InvalidFileMetadataError(LivePairError):
	def __init__(self, file_path: str):
		self.file_path = file_path
		super().__init__(f"Invalid file metadata at:\n{file_path}")

#============================================

class MuxingError(LivePairError):
	def __init__(self, file_path: str, cause: Exception):
		self.file_path = file_path
		self.cause = cause
		super().__init__(f"{cause}")

#============================================

class ConfigError(LivePairError):
	pass
