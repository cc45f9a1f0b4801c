"""
Fixture media helpers for tests.
"""

# Standard Library
import shutil
import struct
from fractions import Fraction

# PIP3 modules
import av
import numpy
import PIL.Image

# local repo modules
from livepairlib.media import quicktime

#============================================

HAVE_FFPROBE = shutil.which("ffprobe") is not None
SKIP_FFPROBE_REASON = "missing tools: ffprobe"

MOVIE_SIZE = (64, 48)
MOVIE_RATE = 25
MOVIE_FRAMES = 12
AUDIO_RATE = 48000
AUDIO_FRAME_SAMPLES = 1024

# 90 degree rotation in the tkhd matrix layout
ROTATED_MATRIX = struct.pack(">9I", 0, 0x00010000, 0, 0xFFFF0000, 0, 0, 0, 0, 0x40000000)

#============================================

def make_jpeg(path: str, size: tuple = (96, 64), with_exif: bool = True) -> str:
	"""
	Write a small JPEG, optionally carrying camera make/model EXIF tags.
	"""
	image = PIL.Image.new('RGB', size, (200, 40, 40))
	if with_exif:
		exif = PIL.Image.Exif()
		exif[0x010F] = "LivePair Test"
		exif[0x0110] = "Fixture Camera"
		image.save(path, 'JPEG', quality=90, exif=exif)
	else:
		image.save(path, 'JPEG', quality=90)
	return path

#============================================

def _add_video(container, frame_count: int) -> None:
	(width, height) = MOVIE_SIZE
	stream = container.add_stream('mpeg4', rate=MOVIE_RATE)
	stream.width = width
	stream.height = height
	stream.pix_fmt = 'yuv420p'
	for index in range(frame_count):
		array = numpy.full((height, width, 3), (index * 20) % 256, dtype=numpy.uint8)
		frame = av.VideoFrame.from_ndarray(array, format='rgb24')
		for packet in stream.encode(frame):
			container.mux(packet)
	for packet in stream.encode():
		container.mux(packet)

#============================================

def _add_tone(container, seconds: float) -> None:
	"""
	Encode a mono sine tone as aac.
	"""
	stream = container.add_stream('aac', rate=AUDIO_RATE)
	stream.layout = 'mono'
	frame_total = int(seconds * AUDIO_RATE) // AUDIO_FRAME_SAMPLES
	for index in range(frame_total):
		start = index * AUDIO_FRAME_SAMPLES
		times = numpy.arange(start, start + AUDIO_FRAME_SAMPLES) / AUDIO_RATE
		samples = (0.2 * numpy.sin(2 * numpy.pi * 440 * times)).astype(numpy.float32)
		frame = av.AudioFrame.from_ndarray(samples.reshape(1, -1), format='fltp',
			layout='mono')
		frame.sample_rate = AUDIO_RATE
		frame.pts = start
		frame.time_base = Fraction(1, AUDIO_RATE)
		for packet in stream.encode(frame):
			container.mux(packet)
	for packet in stream.encode():
		container.mux(packet)

#============================================

def make_movie(path: str, frame_count: int = MOVIE_FRAMES) -> str:
	"""
	Write a short mpeg4 QuickTime movie with one video track.
	"""
	with av.open(path, 'w', format='mov') as container:
		_add_video(container, frame_count)
	return path

#============================================

def make_movie_with_audio(path: str) -> str:
	"""
	Write a QuickTime movie with one video track and one aac track.
	"""
	with av.open(path, 'w', format='mov') as container:
		_add_video(container, MOVIE_FRAMES)
		_add_tone(container, MOVIE_FRAMES / MOVIE_RATE)
	return path

#============================================

def make_audio_only_movie(path: str) -> str:
	with av.open(path, 'w', format='mov') as container:
		_add_tone(container, 0.5)
	return path

#============================================

def set_video_matrix(path: str, matrix: bytes) -> None:
	"""
	Overwrite the display matrix of the first video track in place.
	"""
	with open(path, 'r+b') as handle:
		for (atom_type, start, end) in quicktime.scan_top_level(handle):
			if atom_type != b"moov":
				continue
			handle.seek(start)
			moov = bytearray(handle.read(end - start))
			for track in quicktime.parse_tracks(moov):
				if track['handler'] == b"vide":
					handle.seek(start + track['matrix_offset'])
					handle.write(matrix)
					return
	raise RuntimeError(f"no video track in {path}")

#============================================

def video_packets(path: str) -> list:
	"""
	Return (pts, dts, payload) for each packet of the first video track.
	"""
	packets = []
	with av.open(path) as container:
		stream = container.streams.video[0]
		for packet in container.demux(stream):
			if packet.dts is None:
				continue
			packets.append((packet.pts, packet.dts, bytes(packet)))
	return packets

#============================================

def stream_types(path: str) -> list:
	with av.open(path) as container:
		return [stream.type for stream in container.streams]

#============================================

def write_junk(path: str) -> str:
	with open(path, 'wb') as handle:
		handle.write(b"not a movie\n" * 32)
	return path
