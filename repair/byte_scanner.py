"""
Byte Scanner — Signature carving of ZIP local file headers.

HOW IT WORKS
────────────
1.  Search the buffer for EVERY occurrence of ``PK\\x03\\x04`` using
    bytes.find(), restarting one byte past each hit (never header-size
    strided: in a damaged archive signatures need not sit on record
    boundaries).
2.  Parse the fixed 30-byte local header at each hit (little-endian).
3.  Reject candidates whose name runs past the buffer or is empty.
4.  Skip directory entries (name ends in "/").
5.  Trust the declared compressed size only when it is non-zero and fits
    in the buffer; otherwise the data runs to the next ZIP record
    signature, or to the end of the buffer.

Signature bytes that happen to occur inside compressed data are kept as
candidates.  Later stages reject them when they fail to inflate.
"""

from __future__ import annotations

import struct
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from .errors import MalformedEntryError
from .signatures import (
    CompressionMethod,
    LOCAL_FILE_HEADER,
    LOCAL_HEADER_SIZE,
    RECORD_SIGNATURES,
    CENTRAL_DIRECTORY,
    END_OF_CENTRAL_DIR,
)

logger = logging.getLogger(__name__)

# sig, version, flags, method, time, date, crc, csize, usize, fn_len, extra_len
_LOCAL_HEADER = struct.Struct("<4sHHHHHIIIHH")

_FLAG_DATA_DESCRIPTOR = 0x08
_ZIP64_MARKER = 0xFFFFFFFF


@dataclass(frozen=True)
class ArchiveEntry:
    """One entry discovered from a local file header."""
    path: str
    method: CompressionMethod
    data_offset: int                # Start of compressed data in the buffer
    data_length: int                # Never reaches past the buffer
    declared_uncompressed_size: Optional[int] = None   # Untrusted
    header_offset: int = 0          # Offset of the PK\x03\x04 record
    method_code: int = 0            # Raw method field
    flags: int = 0
    size_clamped: bool = False      # Declared size was unusable
    crc32: Optional[int] = None     # None when deferred to a data descriptor

    @property
    def compressed_range(self) -> tuple[int, int]:
        return self.data_offset, self.data_length

    @property
    def data_end(self) -> int:
        return self.data_offset + self.data_length

    def read(self, buffer: bytes) -> bytes:
        """Slice this entry's compressed bytes out of *buffer*."""
        return bytes(buffer[self.data_offset:self.data_end])


# ─────────────────────────────────────────────────────────────
#  Scanning
# ─────────────────────────────────────────────────────────────

def scan(buffer: bytes, start: int = 0) -> Iterator[ArchiveEntry]:
    """Yield every plausible entry in ascending offset order.

    A generator: each call restarts from *start*, and it stops at the end
    of the buffer.
    """
    data = _as_bytes(buffer)
    pos = data.find(LOCAL_FILE_HEADER, start)
    while pos != -1:
        try:
            entry = parse_local_header(data, pos)
        except MalformedEntryError as e:
            logger.debug("Discarding candidate: %s", e)
        else:
            if entry is not None:
                yield entry
        pos = data.find(LOCAL_FILE_HEADER, pos + 1)


def parse_local_header(data: bytes, offset: int) -> Optional[ArchiveEntry]:
    """Build an ArchiveEntry from the local header at *offset*.

    Returns None for directory entries.  Raises MalformedEntryError when
    the header cannot describe a real entry.
    """
    total = len(data)
    if offset + LOCAL_HEADER_SIZE > total:
        raise MalformedEntryError(offset, "header runs past end of buffer")

    (_sig, _version, flags, method_code, _mtime, _mdate, crc,
     csize, usize, fn_len, extra_len) = _LOCAL_HEADER.unpack_from(data, offset)

    name_start = offset + LOCAL_HEADER_SIZE
    if name_start + fn_len > total:
        raise MalformedEntryError(
            offset, f"filename length {fn_len} runs past end of buffer")
    if fn_len == 0:
        raise MalformedEntryError(offset, "empty filename")

    path = data[name_start:name_start + fn_len].decode(
        "utf-8", errors="replace")
    if "\x00" in path:
        raise MalformedEntryError(offset, "NUL byte in filename")
    if path.endswith("/"):
        return None

    data_start = min(name_start + fn_len + extra_len, total)

    clamped = False
    if csize == 0 or csize == _ZIP64_MARKER or data_start + csize > total:
        data_end = next_record_offset(data, data_start)
        clamped = True
    else:
        data_end = data_start + csize

    declared = usize
    if usize == _ZIP64_MARKER or (usize == 0 and flags & _FLAG_DATA_DESCRIPTOR):
        declared = None

    return ArchiveEntry(
        path=path,
        method=CompressionMethod.from_code(method_code),
        data_offset=data_start,
        data_length=data_end - data_start,
        declared_uncompressed_size=declared,
        header_offset=offset,
        method_code=method_code,
        flags=flags,
        size_clamped=clamped,
        crc32=None if flags & _FLAG_DATA_DESCRIPTOR and crc == 0 else crc,
    )


def next_record_offset(data: bytes, start: int) -> int:
    """Offset of the first ZIP record signature at or after *start*."""
    best = len(data)
    for sig in RECORD_SIGNATURES:
        pos = data.find(sig, start, best)
        if pos != -1:
            best = pos
    return best


def find_entry(buffer: bytes, path: str,
               header_offset: Optional[int] = None) -> Optional[ArchiveEntry]:
    """Locate the raw entry for *path*.

    An entry at the exact *header_offset* wins; otherwise the first entry
    with a matching path.
    """
    data = _as_bytes(buffer)
    if header_offset is not None and 0 <= header_offset < len(data):
        if data.startswith(LOCAL_FILE_HEADER, header_offset):
            try:
                entry = parse_local_header(data, header_offset)
            except MalformedEntryError:
                entry = None
            if entry is not None and entry.path == path:
                return entry

    for entry in scan(data):
        if entry.path == path:
            return entry
    return None


# ─── Record census (damage analysis) ─────────────────────────

def find_all(data: bytes, pattern: bytes) -> list[int]:
    """Return all positions of `pattern` in `data`."""
    positions = []
    start = 0
    while True:
        pos = data.find(pattern, start)
        if pos == -1:
            break
        positions.append(pos)
        start = pos + 1
    return positions


def locate_records(buffer: bytes) -> dict:
    """Offsets of every local header, central-directory header and EOCD."""
    data = _as_bytes(buffer)
    return {
        "local_headers": find_all(data, LOCAL_FILE_HEADER),
        "central_dir_headers": find_all(data, CENTRAL_DIRECTORY),
        "end_of_central_dir": data.rfind(END_OF_CENTRAL_DIR),
    }


def _as_bytes(buffer) -> bytes:
    if isinstance(buffer, (bytes, bytearray)):
        return buffer
    return bytes(buffer)
