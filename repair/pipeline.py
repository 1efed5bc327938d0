"""
Repair Pipeline — Orchestrates container recovery.

STATE MACHINE
─────────────
    START
      │  open with the central directory (zipfile)
      ▼
    STRUCTURED_OPEN_ATTEMPTED
      ├── opened ──────────► STRUCTURED_OK
      │                        entry list = the reader's own listing;
      │                        an entry the reader cannot extract falls
      │                        back to its raw local-header bytes alone
      └── failed ──────────► SCAN_FALLBACK
                               entry list = every local header found by
                               byte scanning
      ▼
    ENTRIES_PROCESSED   one RecoveredEntry per candidate
      ▼
    REBUILT             fresh archive, discovery order
      ▼
    DONE                RepairOutcome returned; the instance is spent

The public ``repair()`` never raises for a bytes-like argument: every
failure ends up in the returned RepairReport.
"""

from __future__ import annotations

import io
import enum
import logging
import struct
import zipfile
import zlib
from dataclasses import dataclass
from typing import Optional

from .byte_scanner import find_entry, scan
from .config import RepairConfig
from .entry_recovery import (
    EntryCandidate,
    RecoveredEntry,
    SourceKind,
)
from .errors import StructuredOpenError
from .parallel import recover_entries
from .rebuilder import rebuild
from .signatures import CompressionMethod, LOCAL_FILE_HEADER

logger = logging.getLogger(__name__)

# Failures zipfile can raise while reading a single member
_READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    OSError,
    ValueError,
    RuntimeError,               # encrypted member
    NotImplementedError,        # unsupported compression
    struct.error,
)


class PipelineState(enum.Enum):
    START = "start"
    STRUCTURED_OPEN_ATTEMPTED = "structured_open_attempted"
    STRUCTURED_OK = "structured_ok"
    SCAN_FALLBACK = "scan_fallback"
    ENTRIES_PROCESSED = "entries_processed"
    REBUILT = "rebuilt"
    DONE = "done"


# ─────────────────────────────────────────────────────────────
#  Results
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RepairReport:
    """Aggregate outcome of one repair run."""
    total_entries_found: int = 0
    recovered_count: int = 0            # Decompressed + XML-salvaged
    placeholder_count: int = 0
    per_entry_notes: tuple = ()         # Processing order
    salvaged_count: int = 0             # Subset of recovered_count
    truncated_count: int = 0
    structured_open: bool = False       # Central directory was usable
    scan_fallback: bool = False

    @property
    def total_failure(self) -> bool:
        return self.recovered_count == 0

    @property
    def status(self) -> str:
        if self.total_failure:
            return "failed"
        if self.placeholder_count or self.salvaged_count or \
                self.truncated_count:
            return "partial"
        return "success"

    @property
    def summary(self) -> str:
        if self.total_failure:
            return "Repair failed — no entries recovered"
        parts = [f"Recovered {self.recovered_count}/"
                 f"{self.total_entries_found} entries"]
        if self.salvaged_count:
            parts.append(f"{self.salvaged_count} salvaged")
        if self.placeholder_count:
            parts.append(f"{self.placeholder_count} placeholders")
        if self.scan_fallback:
            parts.append("central directory rebuilt")
        return " | ".join(parts)

    def to_dict(self) -> dict:
        return {
            "total_entries_found": self.total_entries_found,
            "recovered_count": self.recovered_count,
            "placeholder_count": self.placeholder_count,
            "salvaged_count": self.salvaged_count,
            "truncated_count": self.truncated_count,
            "structured_open": self.structured_open,
            "scan_fallback": self.scan_fallback,
            "status": self.status,
            "per_entry_notes": list(self.per_entry_notes),
        }


@dataclass(frozen=True)
class RepairOutcome:
    """What repair() hands back to its caller."""
    repaired_bytes: bytes
    report: RepairReport
    entries: tuple = ()                 # RecoveredEntry, archive order


# ══════════════════════════════════════════════════════════════
#  Pipeline
# ══════════════════════════════════════════════════════════════

class RepairPipeline:
    """One single-use recovery run over one input buffer."""

    def __init__(self, config: Optional[RepairConfig] = None):
        self.config = config or RepairConfig()
        self.state = PipelineState.START
        self._notes: list[str] = []
        self._structured = False
        self._fallback = False

    def run(self, raw) -> RepairOutcome:
        if raw is None or not isinstance(raw, (bytes, bytearray, memoryview)):
            raise TypeError(
                f"repair() needs a bytes-like buffer, got {type(raw).__name__}")
        if self.state is not PipelineState.START:
            raise RuntimeError("RepairPipeline instances are single-use")

        data = bytes(raw)
        logger.debug("Repair run over %d bytes", len(data))

        self._transition(PipelineState.STRUCTURED_OPEN_ATTEMPTED)
        try:
            candidates = self._structured_candidates(data)
        except StructuredOpenError as e:
            self._transition(PipelineState.SCAN_FALLBACK)
            self._fallback = True
            self._notes.append(
                f"Central directory unusable ({e}); recovered entries by "
                f"scanning local file headers")
            logger.info("Structured open failed (%s) — scanning", e)
            candidates = self._scan_candidates(data)
        else:
            self._transition(PipelineState.STRUCTURED_OK)
            self._structured = True

        results = recover_entries(candidates, self.config)
        entries = []
        for entry, notes in results:
            entries.append(entry)
            self._notes.extend(notes)
        self._transition(PipelineState.ENTRIES_PROCESSED)

        repaired = rebuild(entries, self.config.compress_level)
        self._transition(PipelineState.REBUILT)

        report = self._build_report(entries)
        self._transition(PipelineState.DONE)
        logger.info("Repair finished: %s", report.summary)
        return RepairOutcome(repaired_bytes=repaired, report=report,
                             entries=tuple(entries))

    # ─── Candidate discovery ─────────────────────────────────

    def _structured_candidates(self, data: bytes) -> list[EntryCandidate]:
        """Entries from the central directory, read by zipfile."""
        if not data:
            raise StructuredOpenError("empty input")
        try:
            zf = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, OSError,
                ValueError, NotImplementedError, struct.error) as e:
            raise StructuredOpenError(str(e) or type(e).__name__) from e

        with zf:
            infos = [i for i in zf.infolist() if not i.is_dir()]
            if not infos and LOCAL_FILE_HEADER in data:
                raise StructuredOpenError(
                    "central directory lists no entries")

            candidates = []
            for index, info in enumerate(infos):
                method = CompressionMethod.from_code(info.compress_type)
                try:
                    content = zf.read(info)
                except _READ_ERRORS as e:
                    candidates.append(
                        self._anchored_candidate(data, index, info, e))
                    continue
                candidates.append(EntryCandidate(
                    index=index, path=info.filename, method=method,
                    trusted=content,
                ))
        return candidates

    def _anchored_candidate(self, data: bytes, index: int,
                            info: zipfile.ZipInfo, error: Exception
                            ) -> EntryCandidate:
        """Fall back to the raw bytes behind one unreadable entry."""
        path = info.filename
        logger.info("Reader failed on %s (%s) — using raw bytes", path, error)
        note = f"{path}: reader could not extract ({error}); " \
               f"recovering from raw bytes"
        entry = find_entry(data, path, info.header_offset)
        if entry is None:
            return EntryCandidate(
                index=index, path=path,
                method=CompressionMethod.from_code(info.compress_type),
                crc32=info.CRC, note=note,
            )
        return EntryCandidate(
            index=index, path=path, method=entry.method,
            raw=entry.read(data), crc32=info.CRC, note=note,
        )

    def _scan_candidates(self, data: bytes) -> list[EntryCandidate]:
        candidates = []
        for index, entry in enumerate(scan(data)):
            if entry.size_clamped:
                logger.debug("%s: size field unusable, data runs to 0x%X",
                             entry.path, entry.data_end)
            candidates.append(EntryCandidate(
                index=index, path=entry.path, method=entry.method,
                raw=entry.read(data), crc32=entry.crc32,
            ))
        logger.info("Byte scan found %d candidate entries", len(candidates))
        return candidates

    # ─── Bookkeeping ─────────────────────────────────────────

    def _transition(self, state: PipelineState):
        logger.debug("Pipeline %s → %s", self.state.value, state.value)
        self.state = state

    def _build_report(self, entries: list[RecoveredEntry]) -> RepairReport:
        decompressed = sum(1 for e in entries
                           if e.source_kind is SourceKind.DECOMPRESSED)
        salvaged = sum(1 for e in entries
                       if e.source_kind is SourceKind.XML_SALVAGED)
        placeholders = sum(1 for e in entries
                           if e.source_kind is SourceKind.PLACEHOLDER)

        if not entries:
            self._notes.append(
                "Total recovery failure: no archive entries found")
        elif decompressed + salvaged == 0:
            self._notes.append(
                "Total recovery failure: every entry was replaced by a "
                "placeholder")

        return RepairReport(
            total_entries_found=len(entries),
            recovered_count=decompressed + salvaged,
            placeholder_count=placeholders,
            per_entry_notes=tuple(self._notes),
            salvaged_count=salvaged,
            truncated_count=sum(1 for e in entries if e.truncated),
            structured_open=self._structured,
            scan_fallback=self._fallback,
        )


def repair(raw_bytes, config: Optional[RepairConfig] = None) -> RepairOutcome:
    """Repair a damaged ZIP-family container.  Each call is a fresh run."""
    return RepairPipeline(config).run(raw_bytes)
