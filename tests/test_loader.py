#!/usr/bin/env python3

"""
Pytest coverage for yaml settings loading.
"""

# Standard Library
import os
import sys

# PIP3 modules
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from livepairlib.core import errors
from livepairlib.core import loader

#============================================

def _write_yaml(path: str, lines: list) -> str:
	with open(path, "w") as handle:
		handle.write("\n".join(lines))
		handle.write("\n")
	return path

#============================================

def test_defaults_without_file() -> None:
	settings = loader.SettingsLoader().load()
	assert settings.storage_directory == loader.DEFAULT_STORAGE_DIRECTORY
	assert settings.queue_size == loader.DEFAULT_QUEUE_SIZE
	assert settings.storage_root == os.path.expanduser(loader.DEFAULT_STORAGE_ROOT)

#============================================

def test_full_file(tmp_path) -> None:
	lines = []
	lines.append("livepair: 1")
	lines.append("storage:")
	lines.append(f"  root: \"{tmp_path}\"")
	lines.append("  directory: pairs")
	lines.append("muxer:")
	lines.append("  queue_size: 4")
	lines.append("library:")
	lines.append(f"  root: \"{tmp_path / 'library'}\"")
	yaml_path = _write_yaml(str(tmp_path / "settings.yaml"), lines)
	settings = loader.SettingsLoader(yaml_path).load()
	assert settings.yaml_file == yaml_path
	assert settings.storage_root == str(tmp_path)
	assert settings.storage_directory == "pairs"
	assert settings.queue_size == 4
	assert settings.library_root == str(tmp_path / "library")
	assert settings.as_dict()['muxer'] == {'queue_size': 4}

#============================================

def test_storage_root_override(tmp_path) -> None:
	yaml_path = _write_yaml(str(tmp_path / "settings.yaml"), ["storage: {root: /elsewhere}"])
	settings = loader.SettingsLoader(yaml_path, storage_root=str(tmp_path)).load()
	assert settings.storage_root == str(tmp_path)

#============================================

def test_empty_file_uses_defaults(tmp_path) -> None:
	yaml_path = _write_yaml(str(tmp_path / "settings.yaml"), [])
	settings = loader.SettingsLoader(yaml_path).load()
	assert settings.queue_size == loader.DEFAULT_QUEUE_SIZE

#============================================

@pytest.mark.parametrize("lines", [
	["livepair: 2"],
	["unknown: 1"],
	["- a list"],
	["muxer: {queue_size: 0}"],
	["muxer: {queue_size: true}"],
	["muxer: {queue_size: many}"],
	["storage: {directory: a/b}"],
	["storage: [1, 2]"],
	["library: nope"],
	["storage: {root: [unclosed"],
])
def test_invalid_files(tmp_path, lines: list) -> None:
	yaml_path = _write_yaml(str(tmp_path / "settings.yaml"), lines)
	with pytest.raises(errors.ConfigError):
		loader.SettingsLoader(yaml_path).load()

#============================================

def test_missing_file(tmp_path) -> None:
	with pytest.raises(errors.ConfigError):
		loader.SettingsLoader(str(tmp_path / "missing.yaml")).load()
