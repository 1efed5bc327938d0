"""
File Repair Engine — Caller-side orchestration by container type.

Repair strategies by format:
  • DOCX / XLSX / PPTX / ZIP:  the recovery pipeline (scan, inflate,
                               salvage, rebuild), then a check that the
                               parts the format needs are present
  • PDF:  trim garbage before the %PDF- header, trim bytes after the
          last %%EOF, append a missing %%EOF

The pipeline never decides whether a partial recovery counts as a
failure; that policy lives here, in ``status``.

Integrity:
  • Damage analysis before repair
  • MD5 checksum of input and output
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import RepairConfig
from .damage_detector import DamageReport, analyze_damage, pdf_tail_is_padding
from .entry_recovery import SourceKind
from .pipeline import RepairReport, repair
from .signatures import (
    FILE_TYPES,
    LOCAL_FILE_HEADER,
    PartKind,
    classify_part,
    sniff_file_type,
)
from .xml_salvage import extract_printable_text, salvage_part

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 300

_PDF_HEADER = b"%PDF-"
_PDF_EOF = b"%%EOF"
_TEXT_KINDS = (PartKind.WORD, PartKind.SHEET, PartKind.SLIDE)


@dataclass
class RepairResult:
    """Result of a file repair attempt."""
    success: bool = False
    file_type: str = ""
    status: str = "failed"              # success, partial, failed
    repaired_data: Optional[bytes] = None
    original_size: int = 0
    repaired_size: int = 0
    actions_taken: list[str] = field(default_factory=list)
    actions_failed: list[str] = field(default_factory=list)
    damage_before: Optional[DamageReport] = None
    archive_report: Optional[RepairReport] = None
    preview: str = ""
    md5_before: str = ""
    md5_after: str = ""

    @property
    def size_change(self) -> int:
        return self.repaired_size - self.original_size

    @property
    def corruption_level(self) -> str:
        if self.damage_before is None:
            return "unknown"
        return self.damage_before.damage_level

    @property
    def summary(self) -> str:
        if not self.success:
            return "Repair failed"
        parts = []
        if self.actions_taken:
            parts.append(f"Fixed: {', '.join(self.actions_taken)}")
        if self.size_change != 0:
            sign = "+" if self.size_change > 0 else ""
            parts.append(f"Size: {sign}{self.size_change} bytes")
        return " | ".join(parts) if parts else "No changes needed"

    def to_dict(self) -> dict:
        """JSON-ready view (repaired bytes excluded)."""
        return {
            "success": self.success,
            "file_type": self.file_type,
            "status": self.status,
            "issues": list(self.actions_failed),
            "actions": list(self.actions_taken),
            "preview": self.preview,
            "recovery_stats": {
                "original_size": self.original_size,
                "repaired_size": self.repaired_size,
                "corruption_level": self.corruption_level,
                "md5_before": self.md5_before,
                "md5_after": self.md5_after,
            },
            "archive_report": (self.archive_report.to_dict()
                               if self.archive_report else None),
        }


# ══════════════════════════════════════════════════════════════
#  Main Repair Entry Point
# ══════════════════════════════════════════════════════════════

def repair_file(extension: str, data: bytes,
                config: Optional[RepairConfig] = None,
                damage_report: Optional[DamageReport] = None) -> RepairResult:
    """Attempt to repair a damaged container.

    Args:
        extension: Container type ("docx", "xlsx", "pptx", "zip", "pdf");
                   empty to detect from content
        data: Raw file bytes
        config: Pipeline tuning (defaults if None)
        damage_report: Pre-computed damage report (computed if None)

    Returns:
        RepairResult with repaired data and details
    """
    result = RepairResult()
    result.original_size = len(data)
    result.md5_before = hashlib.md5(data).hexdigest()

    ext = (extension or "").lower().lstrip(".") or sniff_file_type(data)
    result.file_type = ext

    if not data:
        result.actions_failed.append("Empty file — nothing to repair")
        return result

    if damage_report is None:
        damage_report = analyze_damage(ext, data)
    result.damage_before = damage_report
    if not damage_report.is_damaged:
        result.actions_taken.append("No damage detected")

    info = FILE_TYPES.get(ext)
    if ext == "pdf":
        repaired = _repair_pdf(data, result)
    elif (info is not None and info.is_archive) or LOCAL_FILE_HEADER in data:
        repaired = _repair_archive(ext, data, result, config)
    else:
        repaired = None
        result.actions_failed.append(
            f"No repair strategy for .{ext or 'unknown'} files")
        result.preview = extract_printable_text(data)[:PREVIEW_CHARS]

    # Finalize
    if repaired is not None:
        result.repaired_data = repaired
        result.repaired_size = len(repaired)
        result.md5_after = hashlib.md5(repaired).hexdigest()
    result.success = result.status != "failed"
    logger.info("Repaired .%s (%d bytes): %s [%s]", ext, len(data),
                result.status, damage_report.damage_level)
    return result


# ══════════════════════════════════════════════════════════════
#  ZIP-family Repair
# ══════════════════════════════════════════════════════════════

def _repair_archive(ext: str, data: bytes, result: RepairResult,
                    config: Optional[RepairConfig]) -> bytes:
    outcome = repair(data, config)
    report = outcome.report
    result.archive_report = report
    result.status = report.status

    if report.scan_fallback:
        result.actions_taken.append(
            "Rebuilt central directory from local file headers")
    if report.total_entries_found:
        result.actions_taken.append(
            f"Rebuilt archive with {report.total_entries_found} entries")
    if report.salvaged_count:
        result.actions_taken.append(
            f"Salvaged {report.salvaged_count} damaged XML parts")

    for entry in outcome.entries:
        if entry.source_kind is SourceKind.PLACEHOLDER:
            result.actions_failed.append(f"Could not recover {entry.path}")
    if report.total_failure:
        result.actions_failed.append("No archive entries could be recovered")

    # Parts the format cannot open without
    info = FILE_TYPES.get(ext)
    if info is not None and info.required_parts:
        present = {e.path for e in outcome.entries
                   if e.source_kind is not SourceKind.PLACEHOLDER}
        for part in info.required_parts:
            if part not in present:
                result.actions_failed.append(
                    f"Required part missing: {part}")
                if result.status == "success":
                    result.status = "partial"

    result.preview = build_preview(outcome.entries)
    if not result.preview:
        result.preview = extract_printable_text(data)[:PREVIEW_CHARS]
    return outcome.repaired_bytes


def build_preview(entries, limit: int = PREVIEW_CHARS) -> str:
    """Text of the recovered document parts, in archive order."""
    texts = []
    total = 0
    for entry in entries:
        if entry.source_kind is SourceKind.PLACEHOLDER:
            continue
        kind = classify_part(entry.path)
        if kind not in _TEXT_KINDS:
            continue
        res = salvage_part(entry.content, kind, part=entry.path, min_chars=1)
        if not res.recovered:
            continue
        texts.append(res.text)
        total += len(res.text)
        if total >= limit:
            break
    return " ".join(texts)[:limit]


# ══════════════════════════════════════════════════════════════
#  PDF Repair
# ══════════════════════════════════════════════════════════════

def _repair_pdf(data: bytes, result: RepairResult) -> bytes:
    """Header/trailer trimming only; the object graph is left alone."""
    pos = data.find(_PDF_HEADER, 0, 1024)
    if pos == -1:
        result.actions_failed.append("No %PDF- header found")
        result.status = "failed"
        result.preview = extract_printable_text(data)[:PREVIEW_CHARS]
        return data

    repaired = data
    if pos > 0:
        repaired = repaired[pos:]
        result.actions_taken.append(
            f"Trimmed {pos} garbage bytes before %PDF- header")

    result.status = "success"
    eof = repaired.rfind(_PDF_EOF)
    if eof == -1:
        if not repaired.endswith(b"\n"):
            repaired += b"\n"
        repaired += _PDF_EOF + b"\n"
        result.actions_taken.append("Appended missing %%EOF marker")
        result.actions_failed.append("PDF appears truncated")
        result.status = "partial"
    else:
        end = eof + len(_PDF_EOF)
        if not pdf_tail_is_padding(repaired[end:]):
            if repaired[end:end + 2] == b"\r\n":
                end += 2
            elif repaired[end:end + 1] in (b"\n", b"\r"):
                end += 1
            trimmed = len(repaired) - end
            repaired = repaired[:end]
            result.actions_taken.append(
                f"Trimmed {trimmed} bytes after the last %%EOF")

    result.preview = extract_printable_text(repaired)[:PREVIEW_CHARS]
    return repaired
