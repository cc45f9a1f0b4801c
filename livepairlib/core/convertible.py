#!/usr/bin/env python3

"""
Resolution of caller-supplied resources into file paths and decoded images.

A path-convertible value is a str, an os.PathLike, a ``file://`` URL string,
or any object exposing ``as_path()``. An image-convertible value is anything
path-convertible, raw encoded bytes, or an already decoded PIL image.
"""

import io
import os
import urllib.parse
import PIL.Image
from livepairlib.core import errors

#============================================

def as_path(resource) -> str:
	if hasattr(resource, 'as_path'):
		resource = resource.as_path()
	if isinstance(resource, os.PathLike):
		resource = os.fspath(resource)
	if isinstance(resource, bytes):
		resource = os.fsdecode(resource)
	if not isinstance(resource, str) or resource == "":
		raise errors.InvalidFilePathError(resource)
	if resource.startswith("file://"):
		parsed = urllib.parse.urlparse(resource)
		resource = urllib.parse.unquote(parsed.path)
	return resource

#============================================

def as_image(resource) -> PIL.Image.Image:
	if isinstance(resource, PIL.Image.Image):
		return resource
	try:
		if isinstance(resource, (bytes, bytearray)):
			image = PIL.Image.open(io.BytesIO(resource))
		else:
			image = PIL.Image.open(as_path(resource))
		image.load()
	except (OSError, errors.InvalidFilePathError) as error:
		raise errors.InvalidImageSourceError(resource) from error
	return image
