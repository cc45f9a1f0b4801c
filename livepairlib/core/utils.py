#!/usr/bin/env python3

import os
import uuid
from fractions import Fraction
from livepairlib.core import errors

_QUIET_MODE = False

#============================================

def set_quiet_mode(quiet: bool) -> None:
	global _QUIET_MODE
	_QUIET_MODE = bool(quiet)

#============================================

def is_quiet_mode() -> bool:
	return _QUIET_MODE

#============================================

def make_identifier() -> str:
	return str(uuid.uuid4()).upper()

#============================================

def ensure_file_exists(filepath: str) -> None:
	if not os.path.isfile(filepath):
		raise RuntimeError(f"file not found: {filepath}")
	return

#============================================

def parse_size(raw_size) -> tuple:
	"""
	Accept (width, height) pairs or 'WxH' strings.
	"""
	if raw_size is None:
		raise errors.ConfigError("size is required")
	if isinstance(raw_size, str):
		parts = raw_size.lower().split('x')
		if len(parts) != 2:
			raise errors.ConfigError("size must be formatted as WIDTHxHEIGHT")
		raw_size = parts
	if not isinstance(raw_size, (list, tuple)) or len(raw_size) != 2:
		raise errors.ConfigError("size must be [width, height]")
	try:
		width = float(raw_size[0])
		height = float(raw_size[1])
	except (TypeError, ValueError) as error:
		raise errors.ConfigError(f"size must be numeric: {raw_size}") from error
	if width <= 0 or height <= 0:
		raise errors.ConfigError("size must be positive")
	return (width, height)

#============================================

def aspect_fit(source_size: tuple, target_size: tuple) -> tuple:
	scale = min(Fraction(str(target_size[0])) / source_size[0],
		Fraction(str(target_size[1])) / source_size[1])
	width = int(round(source_size[0] * scale))
	height = int(round(source_size[1] * scale))
	return (max(width, 1), max(height, 1))
