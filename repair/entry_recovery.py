"""
Entry Recovery — Turn one candidate entry into a RecoveredEntry.

Every candidate produces exactly one RecoveredEntry, whatever its damage:

    trusted bytes (central-directory reader) ──────────────┐
    raw bytes ─► EntryDecompressor ─► decoded bytes ───────┼─► Decompressed
                     │        (prefix or bad CRC: kept for │   (XML that will
                     │         binary, salvaged for XML)   │    not parse goes
                     ├─ DecodeError ─► XML: XmlSalvage ────┼─►  to salvage)
                     │                 binary: empty payload
    no bytes at all ───────────────────────────────────────┴─► Placeholder

recover_entry() is a pure function of its inputs so it can run in a worker
process.
"""

from __future__ import annotations

import enum
import logging
import zlib
from dataclasses import dataclass
from typing import Optional
from xml.etree import ElementTree

from .config import RepairConfig
from .decompressor import inflate_entry
from .errors import DecodeError
from .media_check import is_image_part, validate_image
from .signatures import CompressionMethod, PartKind, classify_part
from .xml_salvage import extractor_for, placeholder_text, salvage_part

logger = logging.getLogger(__name__)


class SourceKind(enum.Enum):
    DECOMPRESSED = "decompressed"
    XML_SALVAGED = "xml_salvaged"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class RecoveredEntry:
    """Final content for one entry of the rebuilt archive."""
    path: str
    content: bytes
    source_kind: SourceKind
    truncated: bool = False
    method: CompressionMethod = CompressionMethod.DEFLATE


@dataclass(frozen=True)
class EntryCandidate:
    """One entry waiting to be recovered."""
    index: int                          # Discovery order
    path: str
    method: CompressionMethod
    raw: Optional[bytes] = None         # Compressed bytes found by scanning
    trusted: Optional[bytes] = None     # Content read via central directory
    crc32: Optional[int] = None
    note: str = ""                      # Issue recorded before recovery


def recover_entry(candidate: EntryCandidate, config: RepairConfig
                  ) -> tuple[RecoveredEntry, list[str]]:
    """Recover one entry.  Returns the entry and its report notes."""
    path = candidate.path
    kind = classify_part(path)
    notes = [candidate.note] if candidate.note else []
    damaged = False

    if candidate.trusted is not None:
        content = candidate.trusted
    elif candidate.raw is None:
        return _placeholder(candidate, kind, notes,
                            "no local file header found for this entry")
    else:
        try:
            result = inflate_entry(candidate.raw, candidate.method,
                                   config.probe_budget, config.max_skip_bytes)
        except DecodeError as e:
            if kind is None:
                return _placeholder(candidate, kind, notes,
                                    f"could not decompress ({e})")
            return _salvage(candidate, kind, candidate.raw, notes, config,
                            f"could not decompress ({e})", truncated=True)

        content = result.content
        problem = ""
        if result.truncated:
            problem = (f"stream damaged, only a {len(content)}-byte prefix "
                       f"decoded")
        elif candidate.crc32 is not None and \
                zlib.crc32(content) != candidate.crc32:
            problem = "CRC mismatch after decompression"

        if problem:
            if kind is not None:
                return _salvage(candidate, kind, content, notes, config,
                                problem, truncated=True)
            # Binary parts keep whatever decoded
            notes.append(f"{path}: {problem}; kept {len(content)} decoded "
                         f"bytes")
            damaged = True

        if result.skipped:
            notes.append(f"{path}: skipped {result.skipped} leading garbage "
                         f"bytes before the deflate stream")
        elif result.strategy == "wrapped":
            notes.append(f"{path}: stream carried a zlib/gzip wrapper")

    if kind is not None and not _is_well_formed(content):
        return _salvage(candidate, kind, content, notes, config,
                        "XML is not well-formed", truncated=False)

    if config.check_media and is_image_part(path):
        ok, reason = validate_image(content)
        if not ok:
            notes.append(f"{path}: {reason}")

    logger.debug("%s: decompressed (%d bytes)", path, len(content))
    return RecoveredEntry(path, content, SourceKind.DECOMPRESSED,
                          truncated=damaged, method=candidate.method), notes


# ─────────────────────────────────────────────────────────────
#  Fallbacks
# ─────────────────────────────────────────────────────────────

def _salvage(candidate: EntryCandidate, kind: PartKind, data: bytes,
             notes: list[str], config: RepairConfig, reason: str,
             truncated: bool) -> tuple[RecoveredEntry, list[str]]:
    path = candidate.path
    res = salvage_part(data, kind, part=path, min_chars=config.min_text_chars)

    if not res.recovered:
        # res.text is the placeholder sentence here
        xml = extractor_for(kind).wrap(res.text, path)
        source = SourceKind.PLACEHOLDER
        outcome = "no readable text, placeholder part inserted"
    else:
        xml = res.xml if res.anchored and res.xml \
            else extractor_for(kind).wrap(res.text, path)
        source = SourceKind.XML_SALVAGED
        outcome = f"salvaged {len(res.text)} characters of text"
        if res.repaired:
            outcome += ", closed unbalanced elements"

    notes.append(f"{path}: {reason}; {outcome}")
    logger.debug("%s: %s via salvage", path, source.value)
    return RecoveredEntry(path, xml.encode("utf-8"), source,
                          truncated=truncated,
                          method=candidate.method), notes


def _placeholder(candidate: EntryCandidate, kind: Optional[PartKind],
                 notes: list[str], reason: str
                 ) -> tuple[RecoveredEntry, list[str]]:
    path = candidate.path
    if kind is None:
        content = b""
        notes.append(f"{path}: {reason}; replaced with an empty placeholder")
    else:
        content = extractor_for(kind).wrap(
            placeholder_text(path), path).encode("utf-8")
        notes.append(f"{path}: {reason}; placeholder part inserted")
    logger.debug("%s: placeholder (%s)", path, reason)
    return RecoveredEntry(path, content, SourceKind.PLACEHOLDER,
                          truncated=True, method=candidate.method), notes


def _is_well_formed(content: bytes) -> bool:
    try:
        ElementTree.fromstring(content)
    except (ElementTree.ParseError, ValueError, LookupError):
        # ValueError: multi-byte encodings expat cannot handle
        return False
    return True
