#!/usr/bin/env python3

"""
Copy a JPEG while rewriting its EXIF block with the live pair markers.

Only the APP1 Exif segment is rebuilt. Every other marker segment and the
entropy-coded scan data are copied byte-for-byte, so the image is never
decoded or re-encoded.
"""

import io
import logging
import os
import struct
import PIL.Image
import PIL.TiffImagePlugin
from livepairlib.core import errors
from livepairlib.core import metadata

logger = logging.getLogger(__name__)

EXIF_HEADER = b"Exif\x00\x00"
EXIF_IFD_TAG = 0x8769
GPS_IFD_TAG = 0x8825
INTEROP_IFD_TAG = 0xA005
MAKER_NOTE_TAG = 0x927C
EXIF_VERSION_TAG = 0x9000

APPLE_MAKER_NOTE_SIGNATURE = b"Apple iOS\x00"
APPLE_MAKER_NOTE_HEADER = APPLE_MAKER_NOTE_SIGNATURE + b"\x00\x01" + b"MM"
TIFF_ASCII = 2

SOI_MARKER = 0xD8
SOS_MARKER = 0xDA
EOI_MARKER = 0xD9
APP0_MARKER = 0xE0
APP1_MARKER = 0xE1
MAX_SEGMENT_PAYLOAD = 0xFFFF - 2

#============================================

def build_apple_maker_note(entries: list) -> bytes:
	"""
	Serialize maker note entries as an 'Apple iOS' big-endian IFD.

	Offsets are relative to the start of the maker note.
	"""
	entries = sorted(entries, key=lambda entry: entry.tag)
	data_offset = len(APPLE_MAKER_NOTE_HEADER) + 2 + 12 * len(entries) + 4
	table = struct.pack(">H", len(entries))
	data = b""
	for entry in entries:
		value = str(entry.value).encode('ascii') + b"\x00"
		if len(value) <= 4:
			table += struct.pack(">HHI", entry.tag, TIFF_ASCII, len(value))
			table += value.ljust(4, b"\x00")
			continue
		table += struct.pack(">HHII", entry.tag, TIFF_ASCII, len(value),
			data_offset + len(data))
		data += value
		if len(data) % 2 == 1:
			data += b"\x00"
	return APPLE_MAKER_NOTE_HEADER + table + struct.pack(">I", 0) + data

#============================================

def parse_apple_maker_note(payload: bytes) -> dict:
	"""
	Return the ASCII entries of an Apple maker note keyed by tag.
	"""
	if not payload.startswith(APPLE_MAKER_NOTE_SIGNATURE) or len(payload) < 16:
		return {}
	endian = ">" if payload[12:14] == b"MM" else "<"
	count = struct.unpack(endian + "H", payload[14:16])[0]
	entries = {}
	for index in range(count):
		position = 16 + 12 * index
		if position + 12 > len(payload):
			break
		(tag, field_type, length) = struct.unpack(endian + "HHI",
			payload[position:position + 8])
		if field_type != TIFF_ASCII:
			continue
		raw = payload[position + 8:position + 12]
		if length > 4:
			offset = struct.unpack(endian + "I", raw)[0]
			raw = payload[offset:offset + length]
		entries[tag] = raw[:length].rstrip(b"\x00").decode('ascii', 'replace')
	return entries

#============================================

def iter_segments(data: bytes):
	"""
	Yield (marker, start, end) for each JPEG segment after SOI.

	The scan segment is yielded last and runs to the end of the data.
	"""
	if data[:2] != bytes((0xFF, SOI_MARKER)):
		raise ValueError("missing JPEG start of image marker")
	position = 2
	while position + 1 < len(data):
		if data[position] != 0xFF:
			raise ValueError(f"invalid JPEG marker at offset {position}")
		marker = data[position + 1]
		if marker == 0xFF:
			position += 1
			continue
		if marker in (SOS_MARKER, EOI_MARKER):
			yield (marker, position, len(data))
			return
		if 0xD0 <= marker <= 0xD7 or marker == 0x01:
			yield (marker, position, position + 2)
			position += 2
			continue
		if position + 4 > len(data):
			raise ValueError("truncated JPEG segment")
		length = struct.unpack(">H", data[position + 2:position + 4])[0]
		end = position + 2 + length
		if length < 2 or end > len(data):
			raise ValueError("truncated JPEG segment")
		yield (marker, position, end)
		position = end
	raise ValueError("JPEG has no image data")

#============================================

def _is_exif_segment(data: bytes, marker: int, start: int, end: int) -> bool:
	return marker == APP1_MARKER and data[start + 4:start + 10] == EXIF_HEADER

#============================================

def replace_exif_segment(data: bytes, exif_payload: bytes) -> bytes:
	if len(exif_payload) > MAX_SEGMENT_PAYLOAD:
		raise ValueError("exif block does not fit in one APP1 segment")
	segment = bytes((0xFF, APP1_MARKER)) + struct.pack(">H", len(exif_payload) + 2)
	segment += exif_payload
	parts = [data[:2]]
	inserted = False
	for (marker, start, end) in iter_segments(data):
		if _is_exif_segment(data, marker, start, end):
			continue
		if not inserted and marker != APP0_MARKER:
			parts.append(segment)
			inserted = True
		parts.append(data[start:end])
	return b"".join(parts)

#============================================

def compressed_payload(file_path: str) -> bytes:
	"""
	Return the bytes from the start of scan marker to the end of the file.
	"""
	with open(file_path, 'rb') as image_file:
		data = image_file.read()
	for (marker, start, end) in iter_segments(data):
		if marker == SOS_MARKER:
			return data[start:end]
	raise ValueError(f"no scan data in {file_path}")

#============================================

def _load_ifd(tiff: bytes, offset: int) -> dict:
	ifd = PIL.TiffImagePlugin.ImageFileDirectory_v2(tiff[:8])
	handle = io.BytesIO(tiff)
	handle.seek(offset)
	ifd.load(handle)
	return dict(ifd)

#============================================

def _load_exif_tree(tiff: bytes) -> tuple:
	"""
	Return (ifd0, exif_ifd) with sub-directories nested as dicts.
	"""
	endian = "<" if tiff[:2] == b"II" else ">"
	first_offset = struct.unpack(endian + "I", tiff[4:8])[0]
	ifd0 = _load_ifd(tiff, first_offset)
	exif_ifd = {}
	exif_offset = ifd0.pop(EXIF_IFD_TAG, None)
	if exif_offset:
		exif_ifd = _load_ifd(tiff, exif_offset)
	gps_offset = ifd0.pop(GPS_IFD_TAG, None)
	if gps_offset:
		ifd0[GPS_IFD_TAG] = _load_ifd(tiff, gps_offset)
	interop_offset = exif_ifd.pop(INTEROP_IFD_TAG, None)
	if interop_offset:
		exif_ifd[INTEROP_IFD_TAG] = _load_ifd(tiff, interop_offset)
	return (ifd0, exif_ifd)

#============================================

def build_exif_payload(tiff: bytes, markers: metadata.ImageMarkers) -> bytes:
	ifd0 = {}
	exif_ifd = {}
	if tiff:
		(ifd0, exif_ifd) = _load_exif_tree(tiff)
	exif_ifd[MAKER_NOTE_TAG] = build_apple_maker_note([markers.maker_note])
	exif_ifd[EXIF_VERSION_TAG] = markers.revision.exif_version
	exif = PIL.Image.Exif()
	for tag, value in ifd0.items():
		exif[tag] = value
	exif[EXIF_IFD_TAG] = exif_ifd
	return exif.tobytes()

#============================================

def _read_exif_tiff(file_path: str, data: bytes) -> bytes:
	try:
		with PIL.Image.open(io.BytesIO(data)) as image:
			image_format = image.format
			exif_payload = image.info.get('exif', b"")
	except (OSError, SyntaxError, ValueError) as error:
		raise errors.InvalidFileMetadataError(file_path) from error
	if image_format != 'JPEG':
		raise errors.InvalidFileMetadataError(file_path)
	if not exif_payload.startswith(EXIF_HEADER):
		return b""
	return exif_payload[len(EXIF_HEADER):]

#============================================

def read_markers(file_path: str) -> dict:
	"""
	Read back the content identifier and EXIF version of a JPEG.
	"""
	with open(file_path, 'rb') as image_file:
		data = image_file.read()
	tiff = _read_exif_tiff(file_path, data)
	if not tiff:
		return {'content_identifier': None, 'exif_version': None}
	try:
		(_ifd0, exif_ifd) = _load_exif_tree(tiff)
	except (SyntaxError, ValueError, struct.error, OSError) as error:
		raise errors.InvalidFileMetadataError(file_path) from error
	maker_note = exif_ifd.get(MAKER_NOTE_TAG, b"")
	if isinstance(maker_note, str):
		maker_note = maker_note.encode('latin-1')
	entries = parse_apple_maker_note(bytes(maker_note))
	return {
		'content_identifier': entries.get(metadata.APPLE_CONTENT_IDENTIFIER_TAG),
		'exif_version': exif_ifd.get(EXIF_VERSION_TAG),
	}

#============================================

def read_content_identifier(file_path: str) -> str:
	return read_markers(file_path)['content_identifier']

#============================================

class ImageDestination():
	def __init__(self, path: str):
		directory = os.path.dirname(os.path.abspath(path))
		if not os.path.isdir(directory) or os.path.isdir(path):
			raise errors.InvalidFilePathError(path)
		if not os.access(directory, os.W_OK):
			raise errors.InvalidFilePathError(path)
		self.path = path
		self.data = None

	#============================
	def add_image_from_source(self, source_data: bytes, exif_payload: bytes) -> None:
		self.data = replace_exif_segment(source_data, exif_payload)

	#============================
	def finalize(self) -> None:
		if self.data is None:
			raise RuntimeError("no image added to destination")
		try:
			with open(self.path, 'wb') as image_file:
				image_file.write(self.data)
		except OSError as error:
			raise errors.InvalidFilePathError(self.path) from error

#============================================

def inject_to_file(source_path: str, file_asset) -> None:
	try:
		with open(source_path, 'rb') as source_file:
			data = source_file.read()
	except OSError as error:
		raise errors.InvalidFilePathError(source_path) from error
	destination = ImageDestination(file_asset.path)
	tiff = _read_exif_tiff(source_path, data)
	markers = metadata.image_markers(file_asset.identifier)
	try:
		exif_payload = build_exif_payload(tiff, markers)
		destination.add_image_from_source(data, exif_payload)
	except (SyntaxError, ValueError, TypeError, struct.error) as error:
		raise errors.InvalidFileMetadataError(source_path) from error
	destination.finalize()
	logger.info("wrote still image %s", file_asset.path)
