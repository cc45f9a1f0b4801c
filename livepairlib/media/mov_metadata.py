#!/usr/bin/env python3

"""
Copy the first video track of a movie into a new QuickTime container and
tag it as the moving half of a live pair.

Samples are demuxed on a reader thread into a bounded queue and muxed,
unmodified, by a single writer worker. The blocking put on the queue is the
backpressure between the two. The caller waits on the writer future, so
inject_to_file() returns only once the output is finished or has failed.
"""

import concurrent.futures
import logging
import queue
import struct
import threading
import av
from tqdm import tqdm
from livepairlib.core import errors
from livepairlib.core import metadata
from livepairlib.core import utils
from livepairlib.media import quicktime

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 32
OUTPUT_FORMAT = 'mov'
OUTPUT_OPTIONS = {'movflags': 'use_metadata_tags'}
WRITER_THREAD_PREFIX = "livepair-asset-video-writer"

STATUS_WRITING = 'writing'
STATUS_FINISHED = 'finished'
STATUS_FAILED = 'failed'

# marks the end of the sample stream in the reader queue
END_OF_SAMPLES = object()

#============================================

class TrackReader():
	"""
	Demux the first video track of a movie into a bounded queue.
	"""
	def __init__(self, path: str, queue_size: int = DEFAULT_QUEUE_SIZE):
		self.path = path
		try:
			self.container = av.open(path)
		except (av.error.FFmpegError, OSError, ValueError) as error:
			raise errors.InvalidFileError(path) from error
		if len(self.container.streams.video) == 0:
			self.container.close()
			raise errors.InvalidFileError(path)
		self.stream = self.container.streams.video[0]
		self.frame_count = self.stream.frames
		self.channel = queue.Queue(maxsize=queue_size)
		self.cancelled = threading.Event()
		self.thread = None

	#============================
	def start_reading(self) -> None:
		self.thread = threading.Thread(target=self._read_samples,
			name="livepair-asset-video-reader", daemon=True)
		self.thread.start()

	#============================
	def _read_samples(self) -> None:
		try:
			for packet in self.container.demux(self.stream):
				if self.cancelled.is_set():
					break
				# demux ends with an empty flush packet
				if packet.dts is None:
					continue
				self.channel.put(packet)
		except Exception as error:
			self.channel.put(error)
		finally:
			self.channel.put(END_OF_SAMPLES)

	#============================
	def next_sample(self):
		"""
		Return the next packet, or None at the end of the stream.
		"""
		sample = self.channel.get()
		if sample is END_OF_SAMPLES:
			return None
		if isinstance(sample, Exception):
			raise sample
		return sample

	#============================
	def cancel_reading(self) -> None:
		self.cancelled.set()

	#============================
	def close(self) -> None:
		if self.thread is not None:
			self.thread.join()
		self.container.close()

#============================================

class MetadataTrackAdaptor():
	"""
	Collects timed metadata items for one key; written out when the movie
	is finished.
	"""
	def __init__(self, key: str, data_type: str):
		self.key = key
		self.data_type = data_type
		self.items = []

	#============================
	def append(self, item: metadata.TimedMetadataItem) -> None:
		if (item.key, item.data_type) != (self.key, self.data_type):
			raise RuntimeError(f"metadata track for {self.key} cannot hold {item.key}")
		if item.time_range is None:
			raise RuntimeError(f"timed metadata item {item.key} has no time range")
		self.items.append(item)

#============================================

class TrackWriter():
	def __init__(self, path: str, reader: TrackReader, video_matrix: bytes = None):
		self.path = path
		self.video_matrix = video_matrix
		self.status = STATUS_WRITING
		self.error = None
		self.container = av.open(path, 'w', format=OUTPUT_FORMAT, options=OUTPUT_OPTIONS)
		self.stream = self.container.add_stream_from_template(reader.stream)
		self.metadata_adaptor = MetadataTrackAdaptor(metadata.STILL_IMAGE_TIME_KEY,
			metadata.DATA_TYPE_INT8)

	#============================
	def add_asset_metadata(self, item: metadata.TimedMetadataItem) -> None:
		self.container.metadata[item.key] = str(item.value)

	#============================
	def write_metadata_track(self, item: metadata.TimedMetadataItem) -> None:
		self.metadata_adaptor.append(item)

	#============================
	def append(self, packet) -> None:
		packet.stream = self.stream
		self.container.mux(packet)

	#============================
	def finish(self) -> None:
		try:
			self.container.close()
			if self.error is None:
				quicktime.inject_metadata_track(self.path, self.metadata_adaptor.items,
					self.video_matrix)
		except (av.error.FFmpegError, OSError, ValueError, struct.error,
			quicktime.QuickTimeError) as error:
			if self.error is None:
				self.error = error
		if self.error is None:
			self.status = STATUS_FINISHED
		else:
			self.status = STATUS_FAILED

#============================================

def _copy_samples(reader: TrackReader, writer: TrackWriter) -> int:
	"""
	Move packets from the reader queue into the writer until either side stops.

	Any failure is recorded on the writer; the reader is then cancelled and
	its queue drained so the reader thread can finish.
	"""
	copied = 0
	reached_end = False
	progress = tqdm(total=reader.frame_count or None, unit='frame',
		disable=utils.is_quiet_mode())
	try:
		while True:
			try:
				packet = reader.next_sample()
			except Exception as error:
				writer.error = error
				break
			if packet is None:
				reached_end = True
				break
			try:
				writer.append(packet)
			except Exception as error:
				writer.error = error
				break
			copied += 1
			progress.update(1)
	finally:
		if not reached_end:
			reader.cancel_reading()
			# drain so the reader thread can reach its end marker
			while reader.channel.get() is not END_OF_SAMPLES:
				pass
		progress.close()
		reader.close()
		writer.finish()
	return copied

#============================================

def inject_to_file(source_path: str, file_asset, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
	reader = TrackReader(source_path, queue_size=queue_size)
	try:
		video_matrix = quicktime.read_video_matrix(source_path)
	except (OSError, struct.error, quicktime.QuickTimeError) as error:
		reader.close()
		raise errors.InvalidFileError(source_path) from error
	try:
		writer = TrackWriter(file_asset.path, reader, video_matrix)
	except (av.error.FFmpegError, OSError, ValueError) as error:
		reader.close()
		raise errors.InvalidFilePathError(file_asset.path) from error
	writer.add_asset_metadata(metadata.content_identifier_item(file_asset.identifier))
	writer.write_metadata_track(metadata.still_image_time_item())
	reader.start_reading()
	with concurrent.futures.ThreadPoolExecutor(max_workers=1,
		thread_name_prefix=WRITER_THREAD_PREFIX) as executor:
		future = executor.submit(_copy_samples, reader, writer)
		copied = future.result()
	if writer.error is not None:
		raise errors.MuxingError(file_asset.path, writer.error) from writer.error
	logger.info("wrote movie %s (%d samples)", file_asset.path, copied)

#============================================

def read_content_identifier(file_path: str) -> str:
	"""
	Return the asset-level content identifier of a movie, or None.
	"""
	with av.open(file_path) as container:
		return container.metadata.get(metadata.CONTENT_IDENTIFIER_KEY)
