#!/usr/bin/env python3

"""
Pytest coverage for the video track muxer.
"""

# Standard Library
import json
import os
import subprocess
import sys
from fractions import Fraction

# PIP3 modules
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from livepairlib.core import assets
from livepairlib.core import errors
from livepairlib.core import metadata
from livepairlib.core import utils
from livepairlib.media import mov_metadata
from livepairlib.media import quicktime
import media_utils

IDENTIFIER = "0B6C2E4D-90A1-4F3B-8E1D-7A2C9F41D5E0"

#============================================

@pytest.fixture(autouse=True)
def quiet_progress():
	utils.set_quiet_mode(True)
	yield
	utils.set_quiet_mode(False)

#============================================

def _mux(tmp_path, source_path: str, queue_size: int = 32) -> str:
	file_asset = assets.FileAsset(IDENTIFIER, str(tmp_path / "out.mov"))
	mov_metadata.inject_to_file(source_path, file_asset, queue_size=queue_size)
	return file_asset.path

#============================================

def test_samples_copied_unchanged(tmp_path) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"))
	output_path = _mux(tmp_path, source_path)
	source_packets = media_utils.video_packets(source_path)
	output_packets = media_utils.video_packets(output_path)
	assert len(output_packets) == media_utils.MOVIE_FRAMES
	assert output_packets == source_packets

#============================================

def test_small_queue_keeps_order(tmp_path) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"), frame_count=40)
	output_path = _mux(tmp_path, source_path, queue_size=1)
	assert media_utils.video_packets(output_path) == media_utils.video_packets(source_path)

#============================================

def test_content_identifier_in_container(tmp_path) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"))
	output_path = _mux(tmp_path, source_path)
	assert mov_metadata.read_content_identifier(output_path) == IDENTIFIER
	assert mov_metadata.read_content_identifier(source_path) is None

#============================================

def test_one_timed_metadata_track(tmp_path) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"))
	output_path = _mux(tmp_path, source_path)
	tracks = quicktime.read_metadata_tracks(output_path)
	assert len(tracks) == 1
	(item,) = tracks[0]['items']
	assert item.key == metadata.STILL_IMAGE_TIME_KEY
	assert item.keyspace == metadata.QUICKTIME_METADATA_KEYSPACE
	assert item.value == 0
	assert item.time_range.start == Fraction(0, 1000)
	assert item.time_range.duration == Fraction(200, 3000)

#============================================

def test_metadata_track_references_video(tmp_path) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"))
	output_path = _mux(tmp_path, source_path)
	with open(output_path, 'rb') as handle:
		moov = quicktime._read_moov(handle)
	video_ids = [track['track_id'] for track in quicktime.parse_tracks(moov)
		if track['handler'] == b"vide"]
	tracks = quicktime.read_metadata_tracks(output_path)
	assert tracks[0]['references'] == video_ids

#============================================

def test_junk_source_is_invalid_file(tmp_path) -> None:
	source_path = media_utils.write_junk(str(tmp_path / "source.mov"))
	output_path = str(tmp_path / "out.mov")
	with pytest.raises(errors.InvalidFileError):
		_mux(tmp_path, source_path)
	assert not os.path.exists(output_path)

#============================================

def test_audio_only_source_is_invalid_file(tmp_path) -> None:
	source_path = media_utils.make_audio_only_movie(str(tmp_path / "source.mov"))
	with pytest.raises(errors.InvalidFileError):
		_mux(tmp_path, source_path)
	assert not os.path.exists(str(tmp_path / "out.mov"))

#============================================

def test_audio_track_dropped(tmp_path) -> None:
	source_path = media_utils.make_movie_with_audio(str(tmp_path / "source.mov"))
	assert "audio" in media_utils.stream_types(source_path)
	output_path = _mux(tmp_path, source_path)
	assert "audio" not in media_utils.stream_types(output_path)
	assert media_utils.video_packets(output_path) == media_utils.video_packets(source_path)

#============================================

@pytest.mark.skipif(not media_utils.HAVE_FFPROBE, reason=media_utils.SKIP_FFPROBE_REASON)
def test_ffprobe_reads_identifier(tmp_path) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"))
	output_path = _mux(tmp_path, source_path)
	cmd = f"ffprobe -v error -show_entries format_tags -of json \"{output_path}\""
	payload = subprocess.check_output(cmd, shell=True).decode("utf-8")
	tags = json.loads(payload).get("format", {}).get("tags", {})
	assert tags.get(metadata.CONTENT_IDENTIFIER_KEY) == IDENTIFIER

#============================================

def test_append_failure_surfaces_as_muxing_error(tmp_path, monkeypatch) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"))

	def _failing_append(self, packet) -> None:
		raise ValueError("append rejected")

	monkeypatch.setattr(mov_metadata.TrackWriter, "append", _failing_append)
	with pytest.raises(errors.MuxingError) as excinfo:
		_mux(tmp_path, source_path, queue_size=1)
	assert "append rejected" in str(excinfo.value)
	assert str(excinfo.value).startswith("[livepair] ")

#============================================

def test_unexpected_append_error_does_not_hang(tmp_path, monkeypatch) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"), frame_count=40)

	def _failing_append(self, packet) -> None:
		raise RuntimeError("writer gave up")

	monkeypatch.setattr(mov_metadata.TrackWriter, "append", _failing_append)
	with pytest.raises(errors.MuxingError) as excinfo:
		_mux(tmp_path, source_path, queue_size=1)
	assert "writer gave up" in str(excinfo.value)
	assert isinstance(excinfo.value.cause, RuntimeError)

#============================================

def test_display_matrix_carried_over(tmp_path) -> None:
	source_path = media_utils.make_movie(str(tmp_path / "source.mov"))
	media_utils.set_video_matrix(source_path, media_utils.ROTATED_MATRIX)
	assert quicktime.read_video_matrix(source_path) == media_utils.ROTATED_MATRIX
	output_path = _mux(tmp_path, source_path)
	assert quicktime.read_video_matrix(output_path) == media_utils.ROTATED_MATRIX
