#!/usr/bin/env python3

"""
Metadata entries written into the two halves of a live pair.

Each container family gets its own small set of value types: the still image
carries an Apple maker note entry plus an EXIF version marker, the movie
carries metadata items that are either attached to the whole container or to
a time range inside a metadata track.
"""

import typing
from fractions import Fraction

# still image side
APPLE_CONTENT_IDENTIFIER_TAG = 17
EXIF_VERSION = b"0221"

# movie side
QUICKTIME_METADATA_KEYSPACE = "mdta"
CONTENT_IDENTIFIER_KEY = "com.apple.quicktime.content.identifier"
STILL_IMAGE_TIME_KEY = "com.apple.quicktime.still-image-time"
DATA_TYPE_UTF8 = "com.apple.metadata.datatype.UTF-8"
DATA_TYPE_INT8 = "com.apple.metadata.datatype.int8"

# QuickTime well-known data types
WELL_KNOWN_TYPES = {
	DATA_TYPE_UTF8: 1,
	DATA_TYPE_INT8: 65,
}

#============================================

class MakerNoteEntry(typing.NamedTuple):
	tag: int
	value: str

#============================================

class ImageRevision(typing.NamedTuple):
	exif_version: bytes

#============================================

class ImageMarkers(typing.NamedTuple):
	maker_note: MakerNoteEntry
	revision: ImageRevision

#============================================

class TimeRange(typing.NamedTuple):
	start: Fraction
	duration: Fraction

	#============================
	@property
	def end(self) -> Fraction:
		return self.start + self.duration

#============================================

class TimedMetadataItem(typing.NamedTuple):
	key: str
	keyspace: str
	data_type: str
	value: object
	# None for items attached to the container as a whole
	time_range: typing.Optional[TimeRange] = None

	#============================
	def encode_value(self) -> bytes:
		if self.data_type == DATA_TYPE_INT8:
			return int(self.value).to_bytes(1, 'big', signed=True)
		if self.data_type == DATA_TYPE_UTF8:
			return str(self.value).encode('utf-8')
		raise RuntimeError(f"unsupported metadata data type: {self.data_type}")

# the pairing marker always sits at this range, whatever the clip length
STILL_IMAGE_TIME_RANGE = TimeRange(Fraction(0, 1000), Fraction(200, 3000))

#============================================

def image_markers(identifier: str) -> ImageMarkers:
	return ImageMarkers(
		maker_note=MakerNoteEntry(APPLE_CONTENT_IDENTIFIER_TAG, identifier),
		revision=ImageRevision(EXIF_VERSION),
	)

#============================================

def content_identifier_item(identifier: str) -> TimedMetadataItem:
	return TimedMetadataItem(
		key=CONTENT_IDENTIFIER_KEY,
		keyspace=QUICKTIME_METADATA_KEYSPACE,
		data_type=DATA_TYPE_UTF8,
		value=identifier,
	)

#============================================

def still_image_time_item() -> TimedMetadataItem:
	return TimedMetadataItem(
		key=STILL_IMAGE_TIME_KEY,
		keyspace=QUICKTIME_METADATA_KEYSPACE,
		data_type=DATA_TYPE_INT8,
		value=0,
		time_range=STILL_IMAGE_TIME_RANGE,
	)
