#!/usr/bin/env python3

import mimetypes
from livepairlib.core import convertible
from livepairlib.core import errors

STILL_IMAGE_TYPE = "image/jpeg"
VIDEO_CONTAINER_TYPE = "video/quicktime"

#============================================

def type_for_path(file_path: str) -> str:
	"""
	Return the container type implied by the file extension, or None.
	"""
	(mime_type, _encoding) = mimetypes.guess_type(file_path, strict=True)
	return mime_type

#============================================

def conforms_to(resource, expected_type: str):
	file_path = convertible.as_path(resource)
	if type_for_path(file_path) == expected_type:
		return resource
	raise errors.InvalidFileTypeError(resource, expected_type)

#============================================

def validate_as_jpg(resource):
	return conforms_to(resource, STILL_IMAGE_TYPE)

#============================================

def validate_as_mov(resource):
	return conforms_to(resource, VIDEO_CONTAINER_TYPE)
