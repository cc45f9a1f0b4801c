#!/usr/bin/env python3

"""
Minimal QuickTime atom reader/writer.

Used to add a boxed timed-metadata track ('mebx') to a finished movie, to
carry the display matrix of the source video track over to the copy, and to
read such tracks back.
"""

import os
import struct
from fractions import Fraction
from livepairlib.core import metadata

METADATA_TIMESCALE = 3000
MATRIX_SIZE = 36
IDENTITY_MATRIX = struct.pack(">9I", 0x00010000, 0, 0, 0, 0x00010000, 0, 0, 0,
	0x40000000)
LANGUAGE_UNDETERMINED = 0x55C4
COPY_CHUNK_SIZE = 1 << 20

#============================================

class QuickTimeError(RuntimeError):
	pass

#============================================

def read_atom_header(data, offset: int, end: int) -> tuple:
	if offset + 8 > end:
		raise QuickTimeError(f"truncated atom header at offset {offset}")
	(size, atom_type) = struct.unpack(">I4s", data[offset:offset + 8])
	header_size = 8
	if size == 1:
		if offset + 16 > end:
			raise QuickTimeError(f"truncated atom header at offset {offset}")
		size = struct.unpack(">Q", data[offset + 8:offset + 16])[0]
		header_size = 16
	elif size == 0:
		size = end - offset
	if size < header_size or offset + size > end:
		raise QuickTimeError(f"invalid size for atom {atom_type!r} at offset {offset}")
	return (atom_type, offset + header_size, offset + size)

#============================================

def iter_atoms(data, offset: int, end: int):
	while offset < end:
		(atom_type, body, atom_end) = read_atom_header(data, offset, end)
		yield (atom_type, offset, body, atom_end)
		offset = atom_end

#============================================

def find_atom(data, path: tuple, offset: int, end: int):
	"""
	Follow a path of atom types; return (start, body, end) or None.
	"""
	for (atom_type, start, body, atom_end) in iter_atoms(data, offset, end):
		if atom_type != path[0]:
			continue
		if len(path) == 1:
			return (start, body, atom_end)
		return find_atom(data, path[1:], body, atom_end)
	return None

#============================================

def build_atom(atom_type: bytes, *parts) -> bytes:
	body = b"".join(parts)
	return struct.pack(">I4s", 8 + len(body), atom_type) + body

#============================================

def build_full_atom(atom_type: bytes, version: int, flags: int, *parts) -> bytes:
	return build_atom(atom_type, struct.pack(">I", (version << 24) | flags), *parts)

#============================================

def scan_top_level(handle) -> list:
	"""
	Return (type, start, end) for each top-level atom of an open file.
	"""
	handle.seek(0, os.SEEK_END)
	file_size = handle.tell()
	atoms = []
	offset = 0
	while offset < file_size:
		handle.seek(offset)
		header = handle.read(16)
		if len(header) < 8:
			raise QuickTimeError(f"truncated atom header at offset {offset}")
		(size, atom_type) = struct.unpack(">I4s", header[:8])
		if size == 1:
			if len(header) < 16:
				raise QuickTimeError(f"truncated atom header at offset {offset}")
			size = struct.unpack(">Q", header[8:16])[0]
		elif size == 0:
			size = file_size - offset
		if size < 8 or offset + size > file_size:
			raise QuickTimeError(f"invalid size for atom {atom_type!r} at offset {offset}")
		atoms.append((atom_type, offset, offset + size))
		offset += size
	return atoms

#============================================

def _read_moov(handle):
	for (atom_type, start, end) in scan_top_level(handle):
		if atom_type == b"moov":
			handle.seek(start)
			return bytearray(handle.read(end - start))
	return None

#============================================

def _movie_header(moov: bytearray) -> dict:
	(_atom_type, body, end) = read_atom_header(moov, 0, len(moov))
	mvhd = find_atom(moov, (b"mvhd",), body, end)
	if mvhd is None:
		raise QuickTimeError("movie has no mvhd atom")
	mvhd_body = mvhd[1]
	if moov[mvhd_body] == 1:
		timescale_offset = mvhd_body + 20
		next_track_offset = mvhd_body + 108
	else:
		timescale_offset = mvhd_body + 12
		next_track_offset = mvhd_body + 96
	return {
		'timescale': struct.unpack(">I", moov[timescale_offset:timescale_offset + 4])[0],
		'next_track_id': struct.unpack(">I", moov[next_track_offset:next_track_offset + 4])[0],
		'next_track_offset': next_track_offset,
	}

#============================================

def parse_tracks(moov: bytearray) -> list:
	(_atom_type, body, end) = read_atom_header(moov, 0, len(moov))
	tracks = []
	for (atom_type, start, trak_body, trak_end) in iter_atoms(moov, body, end):
		if atom_type != b"trak":
			continue
		tkhd = find_atom(moov, (b"tkhd",), trak_body, trak_end)
		hdlr = find_atom(moov, (b"mdia", b"hdlr"), trak_body, trak_end)
		if tkhd is None or hdlr is None:
			continue
		tkhd_body = tkhd[1]
		if moov[tkhd_body] == 1:
			id_offset = tkhd_body + 20
			matrix_offset = tkhd_body + 52
		else:
			id_offset = tkhd_body + 12
			matrix_offset = tkhd_body + 40
		tracks.append({
			'track_id': struct.unpack(">I", moov[id_offset:id_offset + 4])[0],
			'handler': bytes(moov[hdlr[1] + 8:hdlr[1] + 12]),
			'matrix_offset': matrix_offset,
			'start': start,
			'body': trak_body,
			'end': trak_end,
		})
	return tracks

#============================================

def read_video_matrix(path: str):
	"""
	Return the 36-byte tkhd matrix of the first video track, or None.
	"""
	with open(path, 'rb') as handle:
		moov = _read_moov(handle)
	if moov is None:
		return None
	for track in parse_tracks(moov):
		if track['handler'] == b"vide":
			offset = track['matrix_offset']
			return bytes(moov[offset:offset + MATRIX_SIZE])
	return None

#============================================

def _shift_chunk_offsets(moov: bytearray, tracks: list, threshold: int,
	delta: int) -> None:
	for track in tracks:
		stbl = find_atom(moov, (b"mdia", b"minf", b"stbl"), track['body'], track['end'])
		if stbl is None:
			continue
		for (atom_type, _start, body, _end) in iter_atoms(moov, stbl[1], stbl[2]):
			if atom_type == b"stco":
				(fmt, width) = (">I", 4)
			elif atom_type == b"co64":
				(fmt, width) = (">Q", 8)
			else:
				continue
			count = struct.unpack(">I", moov[body + 4:body + 8])[0]
			for index in range(count):
				position = body + 8 + index * width
				value = struct.unpack(fmt, moov[position:position + width])[0]
				if value >= threshold:
					moov[position:position + width] = struct.pack(fmt, value + delta)

#============================================

def _encode_sample(item: metadata.TimedMetadataItem) -> bytes:
	value = item.encode_value()
	# one item box per sample, keyed by local key id 1
	return struct.pack(">II", 8 + len(value), 1) + value

#============================================

def _sample_durations(items: list) -> list:
	durations = []
	expected_start = Fraction(0)
	for item in items:
		if item.time_range is None:
			raise QuickTimeError(f"timed metadata item {item.key} has no time range")
		if Fraction(item.time_range.start) != expected_start:
			raise QuickTimeError("timed metadata items must be contiguous from zero")
		durations.append(int(round(item.time_range.duration * METADATA_TIMESCALE)))
		expected_start = item.time_range.end
	return durations

#============================================

def build_metadata_sample_entry(item: metadata.TimedMetadataItem) -> bytes:
	well_known = metadata.WELL_KNOWN_TYPES.get(item.data_type)
	if well_known is None:
		raise QuickTimeError(f"unsupported metadata data type: {item.data_type}")
	keyd = build_atom(b"keyd", item.keyspace.encode('ascii'), item.key.encode('utf-8'))
	dtyp = build_atom(b"dtyp", struct.pack(">II", 0, well_known))
	key_table = build_atom(b"keys", build_atom(struct.pack(">I", 1), keyd, dtyp))
	return build_atom(b"mebx", bytes(6), struct.pack(">H", 1), key_table)

#============================================

def build_metadata_track(track_id: int, reference_track_id: int,
	movie_timescale: int, items: list, chunk_offset: int) -> bytes:
	for item in items[1:]:
		if (item.key, item.data_type) != (items[0].key, items[0].data_type):
			raise QuickTimeError("one metadata track carries a single key")
	samples = [_encode_sample(item) for item in items]
	durations = _sample_durations(items)
	media_duration = sum(durations)
	movie_duration = -(-media_duration * movie_timescale // METADATA_TIMESCALE)
	tkhd = build_full_atom(b"tkhd", 0, 0x000001,
		struct.pack(">IIIII", 0, 0, track_id, 0, movie_duration), bytes(8),
		struct.pack(">hhhH", 0, 0, 0, 0), IDENTITY_MATRIX, struct.pack(">II", 0, 0))
	tref = build_atom(b"tref", build_atom(b"cdsc", struct.pack(">I", reference_track_id)))
	mdhd = build_full_atom(b"mdhd", 0, 0,
		struct.pack(">IIII", 0, 0, METADATA_TIMESCALE, media_duration),
		struct.pack(">HH", LANGUAGE_UNDETERMINED, 0))
	hdlr = build_full_atom(b"hdlr", 0, 0, b"mhlr", b"meta", bytes(12), b"\x00")
	stsd = build_full_atom(b"stsd", 0, 0, struct.pack(">I", 1),
		build_metadata_sample_entry(items[0]))
	stts_entries = []
	for duration in durations:
		if stts_entries and stts_entries[-1][1] == duration:
			stts_entries[-1][0] += 1
		else:
			stts_entries.append([1, duration])
	stts = build_full_atom(b"stts", 0, 0, struct.pack(">I", len(stts_entries)),
		*[struct.pack(">II", count, delta) for (count, delta) in stts_entries])
	stsc = build_full_atom(b"stsc", 0, 0, struct.pack(">IIII", 1, 1, len(samples), 1))
	stsz = build_full_atom(b"stsz", 0, 0, struct.pack(">II", 0, len(samples)),
		*[struct.pack(">I", len(sample)) for sample in samples])
	if chunk_offset > 0xFFFFFFFF:
		chunk_table = build_full_atom(b"co64", 0, 0, struct.pack(">IQ", 1, chunk_offset))
	else:
		chunk_table = build_full_atom(b"stco", 0, 0, struct.pack(">II", 1, chunk_offset))
	stbl = build_atom(b"stbl", stsd, stts, stsc, stsz, chunk_table)
	dref = build_full_atom(b"dref", 0, 0, struct.pack(">I", 1),
		build_full_atom(b"url ", 0, 0x000001))
	minf = build_atom(b"minf", build_full_atom(b"nmhd", 0, 0),
		build_atom(b"dinf", dref), stbl)
	mdia = build_atom(b"mdia", mdhd, hdlr, minf)
	return build_atom(b"trak", tkhd, tref, mdia)

#============================================

def _copy_range(source, destination, start: int, end: int) -> None:
	source.seek(start)
	remaining = end - start
	while remaining > 0:
		chunk = source.read(min(COPY_CHUNK_SIZE, remaining))
		if not chunk:
			raise QuickTimeError("unexpected end of file while copying")
		destination.write(chunk)
		remaining -= len(chunk)

#============================================

def inject_metadata_track(path: str, items: list, video_matrix: bytes = None) -> None:
	"""
	Rewrite a movie in place, adding one timed metadata track.

	The moov atom is moved to the end of the file, after a new mdat atom
	holding the metadata samples. Chunk offsets of existing tracks are
	adjusted when media data followed the original moov.
	"""
	if len(items) == 0:
		return
	temporary_path = path + ".partial"
	with open(path, 'rb') as source:
		atoms = scan_top_level(source)
		moov_atoms = [atom for atom in atoms if atom[0] == b"moov"]
		if len(moov_atoms) != 1:
			raise QuickTimeError(f"expected one moov atom in {path}")
		(_atom_type, moov_start, moov_end) = moov_atoms[0]
		file_size = atoms[-1][2]
		source.seek(moov_start)
		moov = bytearray(source.read(moov_end - moov_start))
		(_atom_type, moov_body, _end) = read_atom_header(moov, 0, len(moov))
		header = _movie_header(moov)
		tracks = parse_tracks(moov)
		video_tracks = [track for track in tracks if track['handler'] == b"vide"]
		if len(video_tracks) == 0:
			raise QuickTimeError(f"no video track in {path}")
		video_track = video_tracks[0]
		if video_matrix is not None:
			offset = video_track['matrix_offset']
			moov[offset:offset + MATRIX_SIZE] = video_matrix
		track_id = max([header['next_track_id']] + [track['track_id'] + 1 for track in tracks])
		offset = header['next_track_offset']
		moov[offset:offset + 4] = struct.pack(">I", track_id + 1)
		_shift_chunk_offsets(moov, tracks, moov_end, moov_start - moov_end)
		samples = [_encode_sample(item) for item in items]
		with open(temporary_path, 'wb') as destination:
			_copy_range(source, destination, 0, moov_start)
			_copy_range(source, destination, moov_end, file_size)
			chunk_offset = destination.tell() + 8
			destination.write(build_atom(b"mdat", *samples))
			trak = build_metadata_track(track_id, video_track['track_id'],
				header['timescale'], items, chunk_offset)
			destination.write(build_atom(b"moov", bytes(moov[moov_body:]), trak))
	os.replace(temporary_path, path)

#============================================

def _read_mebx_keys(moov: bytearray, stsd: tuple) -> dict:
	(body, end) = stsd
	keys = {}
	for (atom_type, _start, entry_body, entry_end) in iter_atoms(moov, body + 8, end):
		if atom_type != b"mebx":
			continue
		key_table = find_atom(moov, (b"keys",), entry_body + 8, entry_end)
		if key_table is None:
			continue
		for (key_type, _kstart, key_body, key_end) in iter_atoms(moov, key_table[1], key_table[2]):
			key_id = struct.unpack(">I", key_type)[0]
			keyd = find_atom(moov, (b"keyd",), key_body, key_end)
			dtyp = find_atom(moov, (b"dtyp",), key_body, key_end)
			if keyd is None:
				continue
			well_known = None
			if dtyp is not None:
				well_known = struct.unpack(">I", moov[dtyp[1] + 4:dtyp[1] + 8])[0]
			keys[key_id] = {
				'keyspace': bytes(moov[keyd[1]:keyd[1] + 4]).decode('ascii', 'replace'),
				'key': bytes(moov[keyd[1] + 4:keyd[2]]).decode('utf-8', 'replace'),
				'well_known': well_known,
			}
	return keys

#============================================

def _read_table(moov: bytearray, table: tuple, fmt: str) -> list:
	(body, _end) = table
	count = struct.unpack(">I", moov[body + 4:body + 8])[0]
	width = struct.calcsize(fmt)
	entries = []
	for index in range(count):
		position = body + 8 + index * width
		entries.append(struct.unpack(fmt, moov[position:position + width]))
	return entries

#============================================

def _decode_value(raw: bytes, well_known: int):
	for (data_type, type_code) in metadata.WELL_KNOWN_TYPES.items():
		if type_code != well_known:
			continue
		if data_type == metadata.DATA_TYPE_INT8:
			return int.from_bytes(raw, 'big', signed=True)
		return raw.decode('utf-8')
	return raw

#============================================

def _data_type_name(well_known: int) -> str:
	for (data_type, type_code) in metadata.WELL_KNOWN_TYPES.items():
		if type_code == well_known:
			return data_type
	return str(well_known)

#============================================

def _read_metadata_track(handle, moov: bytearray, track: dict) -> dict:
	(body, end) = (track['body'], track['end'])
	mdhd = find_atom(moov, (b"mdia", b"mdhd"), body, end)
	stbl = find_atom(moov, (b"mdia", b"minf", b"stbl"), body, end)
	if mdhd is None or stbl is None:
		raise QuickTimeError(f"incomplete metadata track {track['track_id']}")
	timescale_offset = mdhd[1] + (20 if moov[mdhd[1]] == 1 else 12)
	timescale = struct.unpack(">I", moov[timescale_offset:timescale_offset + 4])[0]
	tables = {}
	for (atom_type, _start, table_body, table_end) in iter_atoms(moov, stbl[1], stbl[2]):
		tables[atom_type] = (table_body, table_end)
	keys = _read_mebx_keys(moov, tables[b"stsd"])
	durations = []
	for (count, delta) in _read_table(moov, tables[b"stts"], ">II"):
		durations.extend([delta] * count)
	(stsz_body, _stsz_end) = tables[b"stsz"]
	(sample_size, sample_count) = struct.unpack(">II", moov[stsz_body + 4:stsz_body + 12])
	if sample_size != 0:
		sizes = [sample_size] * sample_count
	else:
		sizes = [value for (value,) in _read_table(moov, (stsz_body + 4, _stsz_end), ">I")]
	if b"co64" in tables:
		chunk_offsets = [value for (value,) in _read_table(moov, tables[b"co64"], ">Q")]
	else:
		chunk_offsets = [value for (value,) in _read_table(moov, tables[b"stco"], ">I")]
	stsc_entries = _read_table(moov, tables[b"stsc"], ">III")
	references = []
	cdsc = find_atom(moov, (b"tref", b"cdsc"), body, end)
	if cdsc is not None:
		for position in range(cdsc[1], cdsc[2], 4):
			references.append(struct.unpack(">I", moov[position:position + 4])[0])
	items = []
	sample_index = 0
	media_time = 0
	for (chunk_number, chunk_offset) in enumerate(chunk_offsets, start=1):
		per_chunk = 0
		for (first_chunk, samples_per_chunk, _description) in stsc_entries:
			if first_chunk <= chunk_number:
				per_chunk = samples_per_chunk
		position = chunk_offset
		for _ in range(per_chunk):
			if sample_index >= len(sizes):
				break
			handle.seek(position)
			sample = handle.read(sizes[sample_index])
			position += sizes[sample_index]
			duration = durations[sample_index] if sample_index < len(durations) else 0
			time_range = metadata.TimeRange(Fraction(media_time, timescale),
				Fraction(duration, timescale))
			item_position = 0
			while item_position + 8 <= len(sample):
				(item_size, key_id) = struct.unpack(">II",
					sample[item_position:item_position + 8])
				if item_size < 8:
					break
				declared = keys.get(key_id)
				if declared is not None:
					raw = sample[item_position + 8:item_position + item_size]
					items.append(metadata.TimedMetadataItem(
						key=declared['key'],
						keyspace=declared['keyspace'],
						data_type=_data_type_name(declared['well_known']),
						value=_decode_value(raw, declared['well_known']),
						time_range=time_range,
					))
				item_position += item_size
			media_time += duration
			sample_index += 1
	return {
		'track_id': track['track_id'],
		'references': references,
		'keys': sorted(declared['key'] for declared in keys.values()),
		'items': items,
	}

#============================================

def read_metadata_tracks(path: str) -> list:
	"""
	Describe every timed metadata track ('meta' handler) of a movie.
	"""
	with open(path, 'rb') as handle:
		moov = _read_moov(handle)
		if moov is None:
			raise QuickTimeError(f"no moov atom in {path}")
		tracks = []
		for track in parse_tracks(moov):
			if track['handler'] != b"meta":
				continue
			tracks.append(_read_metadata_track(handle, moov, track))
	return tracks
