#!/usr/bin/env python3

"""
Pytest coverage for the livepair command line.
"""

# Standard Library
import os
import sys

# PIP3 modules
import pytest
import yaml

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
import livepair_cli
from livepairlib.core import utils
import media_utils

#============================================

def _write_config(tmp_path) -> str:
	config_path = str(tmp_path / "settings.yaml")
	lines = []
	lines.append("livepair: 1")
	lines.append(f"storage: {{root: \"{tmp_path / 'documents'}\"}}")
	lines.append(f"library: {{root: \"{tmp_path / 'library'}\"}}")
	with open(config_path, "w") as handle:
		handle.write("\n".join(lines))
		handle.write("\n")
	return config_path

#============================================

def test_dump_plan_and_save(tmp_path, monkeypatch, capsys) -> None:
	image_path = media_utils.make_jpeg(str(tmp_path / "still.jpg"))
	movie_path = media_utils.make_movie(str(tmp_path / "clip.mov"))
	argv = ["livepair", "-i", image_path, "-m", movie_path, "-s", "200x200",
		"-c", _write_config(tmp_path), "-S", "-p", "-q"]
	monkeypatch.setattr(sys, "argv", argv)
	livepair_cli.main()
	utils.set_quiet_mode(False)
	plan = yaml.safe_load(capsys.readouterr().out)
	identifier = plan['identifier']
	assert plan['size'] == [200, 133]
	assert plan['saved'] == [
		str(tmp_path / "library" / (identifier + ".jpg")),
		str(tmp_path / "library" / (identifier + ".mov")),
	]
	# saved pairs leave the temporary storage empty
	storage_dir = tmp_path / "documents" / "livepair.liveResource"
	assert os.listdir(str(storage_dir)) == []

#============================================

def test_invalid_type_exits_nonzero(tmp_path, monkeypatch) -> None:
	image_path = media_utils.make_jpeg(str(tmp_path / "still.jpg"))
	argv = ["livepair", "-i", image_path, "-m", str(tmp_path / "clip.avi"),
		"-c", _write_config(tmp_path), "-q"]
	monkeypatch.setattr(sys, "argv", argv)
	with pytest.raises(SystemExit) as excinfo:
		livepair_cli.main()
	utils.set_quiet_mode(False)
	assert excinfo.value.code == 1

#============================================

def test_bad_size_exits_nonzero(tmp_path, monkeypatch) -> None:
	image_path = media_utils.make_jpeg(str(tmp_path / "still.jpg"))
	movie_path = media_utils.make_movie(str(tmp_path / "clip.mov"))
	argv = ["livepair", "-i", image_path, "-m", movie_path, "-s", "10xabc",
		"-c", _write_config(tmp_path), "-q"]
	monkeypatch.setattr(sys, "argv", argv)
	with pytest.raises(SystemExit) as excinfo:
		livepair_cli.main()
	utils.set_quiet_mode(False)
	assert excinfo.value.code == 1
