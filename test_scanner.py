"""
Tests for local-header carving: discovery order, directory skipping,
size clamping and bounds safety against fuzzed headers.
"""
import io
import random
import struct
import zipfile

import pytest

from repair.byte_scanner import (
    find_entry,
    locate_records,
    parse_local_header,
    scan,
)
from repair.errors import MalformedEntryError
from repair.signatures import CompressionMethod, LOCAL_FILE_HEADER
from sample_archives import build_docx, build_zip, entry_data_span


def _header(name, csize=0, method=8, fn_len=None, extra=b""):
    name = name.encode("utf-8") if isinstance(name, str) else name
    return struct.pack(
        "<4sHHHHHIIIHH", LOCAL_FILE_HEADER, 20, 0, method, 0, 0, 0,
        csize, 0, len(name) if fn_len is None else fn_len, len(extra),
    ) + name + extra


def test_scan_finds_entries_in_offset_order():
    data = build_docx()
    entries = list(scan(data))
    assert [e.path for e in entries] == [
        "[Content_Types].xml", "_rels/.rels", "word/document.xml"]
    offsets = [e.header_offset for e in entries]
    assert offsets == sorted(offsets)
    for e in entries:
        assert e.method is CompressionMethod.DEFLATE
        assert not e.size_clamped
        assert (e.data_offset, e.data_end) == entry_data_span(data, e.path)
        assert e.compressed_range == (e.data_offset, e.data_length)


def test_scan_is_restartable():
    data = build_docx()
    assert list(scan(data)) == list(scan(data))
    # Starting past the first header skips it
    first = next(scan(data))
    later = list(scan(data, first.header_offset + 1))
    assert [e.path for e in later] == ["_rels/.rels", "word/document.xml"]


def test_directories_are_skipped():
    data = build_zip([("word/", b""), ("word/document.xml", "<a/>")])
    assert [e.path for e in scan(data)] == ["word/document.xml"]


def test_stored_entries():
    data = build_zip([("a.txt", "plain text")], method=zipfile.ZIP_STORED)
    entry = next(scan(data))
    assert entry.method is CompressionMethod.STORE
    assert entry.read(data) == b"plain text"


def test_zero_size_clamps_to_next_signature():
    body = b"deflated bytes here"
    second = _header("b.xml", csize=4) + b"abcd"
    data = _header("a.xml", csize=0) + body + second
    entries = list(scan(data))
    assert [e.path for e in entries] == ["a.xml", "b.xml"]
    assert entries[0].size_clamped
    assert entries[0].read(data) == body
    assert entries[1].read(data) == b"abcd"


def test_oversized_declared_size_clamps_to_end_of_buffer():
    data = _header("a.xml", csize=10_000) + b"short"
    entry = next(scan(data))
    assert entry.size_clamped
    assert entry.data_end == len(data)
    assert entry.read(data) == b"short"


def test_zip64_marker_is_not_trusted():
    data = _header("a.xml", csize=0xFFFFFFFF) + b"xyz" + b"PK\x01\x02rest"
    entry = next(scan(data))
    assert entry.size_clamped
    assert entry.read(data) == b"xyz"


def test_filename_past_end_is_discarded():
    data = b"junk" + _header("a", fn_len=500)
    assert list(scan(data)) == []
    with pytest.raises(MalformedEntryError):
        parse_local_header(data, 4)


def test_header_past_end_is_discarded():
    data = b"garbage" + LOCAL_FILE_HEADER + b"\x00" * 10
    assert list(scan(data)) == []
    with pytest.raises(MalformedEntryError) as exc:
        parse_local_header(data, 7)
    assert exc.value.offset == 7


def test_empty_filename_is_discarded():
    assert list(scan(_header(b"") + b"data")) == []


def test_invalid_utf8_name_is_decoded_leniently():
    entry = next(scan(_header(b"caf\xe9.xml", csize=3) + b"abc"))
    assert entry.path == "caf\ufffd.xml"


def test_unknown_method():
    entry = next(scan(_header("a.bin", csize=3, method=12) + b"abc"))
    assert entry.method is CompressionMethod.UNKNOWN
    assert entry.method_code == 12


def test_fuzzed_sizes_never_exceed_buffer():
    rng = random.Random(1234)
    base = build_docx([f"Paragraph number {i}" for i in range(20)])
    offsets = [e.header_offset for e in scan(base)]
    for _ in range(200):
        data = bytearray(base)
        for off in offsets:
            struct.pack_into("<I", data, off + 18,
                             rng.choice([0, 1, 0xFFFFFFFF,
                                         rng.randrange(0, 1 << 32)]))
            if rng.random() < 0.3:
                struct.pack_into("<H", data, off + 28, rng.randrange(0, 1 << 16))
        # Chop the tail at a random point too
        data = bytes(data[:rng.randrange(len(data) // 2, len(data) + 1)])
        for entry in scan(data):
            assert 0 <= entry.data_offset <= entry.data_end <= len(data)
            assert entry.path and not entry.path.endswith("/")


def test_random_buffers_with_planted_signatures():
    rng = random.Random(99)
    for _ in range(100):
        data = bytearray(rng.getrandbits(8) for _ in range(512))
        for _ in range(5):
            pos = rng.randrange(0, len(data) - 4)
            data[pos:pos + 4] = LOCAL_FILE_HEADER
        for entry in scan(bytes(data)):
            assert entry.data_end <= len(data)


def test_find_entry_prefers_known_offset():
    data = build_docx()
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo("word/document.xml")
    entry = find_entry(data, "word/document.xml", info.header_offset)
    assert entry.header_offset == info.header_offset
    # A wrong offset still finds the entry by name
    entry = find_entry(data, "word/document.xml", 3)
    assert entry.header_offset == info.header_offset
    assert find_entry(data, "missing.xml") is None


def test_locate_records():
    data = build_docx()
    records = locate_records(data)
    assert len(records["local_headers"]) == 3
    assert len(records["central_dir_headers"]) == 3
    assert records["end_of_central_dir"] == len(data) - 22
