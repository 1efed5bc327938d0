"""
Damage Detector — Identify damaged container files before repair.

Performs multi-level damage analysis on uploaded data:
  1. Header integrity   — ZIP local header / %PDF- at offset 0
  2. Footer integrity   — end-of-central-directory record / %%EOF marker
  3. Structural checks  — central directory where the EOCD says it is,
                          entry counts that agree with each other
  4. Null regions       — zeroed/wiped blocks inside the file
  5. Truncation check   — last entry's data runs past the end

Damage levels:
  • "healthy"    — file passes all checks
  • "minor"      — cosmetic issues (trailing bytes), opens normally
  • "moderate"   — index damaged, entries likely still recoverable
  • "severe"     — heavy corruption, partial recovery expected
  • "fatal"      — nothing recognizable left
"""

from __future__ import annotations

import struct
import logging
from dataclasses import dataclass, field

from .byte_scanner import locate_records, scan
from .signatures import (
    CENTRAL_DIRECTORY,
    EOCD_MIN_SIZE,
    FILE_TYPES,
    LOCAL_FILE_HEADER,
)

logger = logging.getLogger(__name__)

# sig, disk, cd_disk, entries_on_disk, entries_total, cd_size, cd_offset,
# comment_len
_EOCD = struct.Struct("<4sHHHHIIH")

_PDF_HEADER = b"%PDF-"
_PDF_EOF = b"%%EOF"
# Bytes writers commonly leave after %%EOF; not damage
_PDF_TAIL_PADDING = b"\r\n\t \x00"
# How far into the file a displaced header is still looked for
_HEADER_SEARCH = 1024


@dataclass
class DamageReport:
    """Detailed report of container damage analysis."""
    is_damaged: bool = False
    damage_level: str = "healthy"       # healthy, minor, moderate, severe, fatal
    damage_score: float = 0.0           # 0.0 (perfect) to 1.0 (destroyed)
    issues: list[str] = field(default_factory=list)
    repairable: bool = False
    repair_actions: list[str] = field(default_factory=list)
    # Specific flags
    header_damaged: bool = False
    footer_missing: bool = False
    truncated: bool = False
    has_null_regions: bool = False
    structure_broken: bool = False
    trailing_garbage: bool = False
    # Details
    leading_garbage_bytes: int = 0
    trailing_garbage_bytes: int = 0
    local_header_count: int = 0
    central_dir_count: int = 0
    declared_entry_count: int = 0
    actual_size: int = 0
    null_region_percent: float = 0.0

    @property
    def status_icon(self) -> str:
        icons = {
            "healthy": "✅",
            "minor": "⚠️",
            "moderate": "🟡",
            "severe": "🔴",
            "fatal": "💀",
        }
        return icons.get(self.damage_level, "❓")

    @property
    def status_text(self) -> str:
        if not self.is_damaged:
            return "Healthy"
        return f"{self.damage_level.capitalize()} damage"

    @property
    def short_summary(self) -> str:
        if not self.is_damaged:
            return "File intact"
        parts = []
        if self.header_damaged:
            parts.append("header damaged")
        if self.footer_missing:
            parts.append("end record missing")
        if self.structure_broken:
            parts.append("index broken")
        if self.truncated:
            parts.append("truncated")
        if self.has_null_regions:
            parts.append(f"{self.null_region_percent:.0f}% zeroed")
        if self.trailing_garbage:
            parts.append("trailing bytes")
        return ", ".join(parts) if parts else "unknown damage"


# ══════════════════════════════════════════════════════════════
#  Main entry point
# ══════════════════════════════════════════════════════════════

def analyze_damage(extension: str, data: bytes) -> DamageReport:
    """Analyze container data for damage and corruption.

    Args:
        extension: Container type ("docx", "xlsx", "pptx", "zip", "pdf")
        data: Raw file bytes

    Returns:
        DamageReport with detailed findings
    """
    report = DamageReport()
    report.actual_size = len(data)

    if not data or len(data) < 8:
        report.is_damaged = True
        report.damage_level = "fatal"
        report.damage_score = 1.0
        report.issues.append("File is empty or too small")
        return report

    ext = extension.lower()
    info = FILE_TYPES.get(ext)
    if info is None or info.is_archive:
        _check_zip(data, report)
    elif ext == "pdf":
        _check_pdf(data, report)

    _check_null_regions(data, report)
    _compute_damage_level(report)
    _assess_repairability(ext, report)
    return report


# ══════════════════════════════════════════════════════════════
#  ZIP family
# ══════════════════════════════════════════════════════════════

def _check_zip(data: bytes, report: DamageReport):
    records = locate_records(data)
    locals_ = records["local_headers"]
    report.local_header_count = len(locals_)
    report.central_dir_count = len(records["central_dir_headers"])

    # 1. Header
    if not locals_:
        report.header_damaged = True
        report.issues.append("No ZIP local file headers found")
        return
    if locals_[0] != 0:
        report.header_damaged = True
        report.leading_garbage_bytes = locals_[0]
        report.issues.append(
            f"{locals_[0]} bytes before the first local file header")
        report.repair_actions.append("scan_local_headers")

    # 2. Footer
    eocd = records["end_of_central_dir"]
    if eocd == -1 or eocd + EOCD_MIN_SIZE > len(data):
        report.footer_missing = True
        report.issues.append("End-of-central-directory record missing")
        report.repair_actions.append("rebuild_central_directory")
        _check_truncation(data, report)
        return

    (_sig, _disk, _cd_disk, _on_disk, total, cd_size, cd_offset,
     comment_len) = _EOCD.unpack_from(data, eocd)
    report.declared_entry_count = total

    record_end = eocd + EOCD_MIN_SIZE + comment_len
    if record_end > len(data):
        report.truncated = True
        report.issues.append("Archive comment cut short")
    elif record_end < len(data):
        report.trailing_garbage = True
        report.trailing_garbage_bytes = len(data) - record_end
        report.issues.append(
            f"{report.trailing_garbage_bytes} bytes after the end record")
        report.repair_actions.append("trim_trailing_bytes")

    # 3. Structure
    cd_start = eocd - cd_size
    if cd_start < 0 or (total and not data.startswith(CENTRAL_DIRECTORY,
                                                      cd_start)):
        report.structure_broken = True
        report.issues.append(
            f"Central directory not found at offset {max(cd_start, 0)}")
        report.repair_actions.append("rebuild_central_directory")
    elif cd_start != cd_offset and cd_start - cd_offset != locals_[0]:
        report.structure_broken = True
        report.issues.append(
            f"Central directory offset {cd_offset} disagrees with "
            f"its position {cd_start}")

    if report.central_dir_count < total:
        report.structure_broken = True
        report.issues.append(
            f"Central directory lists {report.central_dir_count} of "
            f"{total} entries")
    if report.local_header_count < total:
        report.truncated = True
        report.issues.append(
            f"Only {report.local_header_count} of {total} local headers "
            f"present")
    if report.structure_broken and "rebuild_central_directory" not in \
            report.repair_actions:
        report.repair_actions.append("rebuild_central_directory")


def _check_truncation(data: bytes, report: DamageReport):
    """Without an end record, look at whether the last entry is complete."""
    last = None
    for entry in scan(data):
        last = entry
    if last is not None and last.size_clamped and \
            last.data_end == len(data):
        report.truncated = True
        report.issues.append(f"Last entry '{last.path}' runs to end of file")


# ══════════════════════════════════════════════════════════════
#  PDF
# ══════════════════════════════════════════════════════════════

def pdf_tail_is_padding(tail: bytes) -> bool:
    """True when the bytes after the last %%EOF are only whitespace or NULs."""
    return not tail.strip(_PDF_TAIL_PADDING)


def _check_pdf(data: bytes, report: DamageReport):
    pos = data.find(_PDF_HEADER, 0, _HEADER_SEARCH)
    if pos == -1:
        report.header_damaged = True
        report.issues.append("Missing %PDF- header")
        return
    if pos > 0:
        report.header_damaged = True
        report.leading_garbage_bytes = pos
        report.issues.append(f"{pos} bytes before the %PDF- header")
        report.repair_actions.append("trim_leading_garbage")

    eof = data.rfind(_PDF_EOF)
    if eof == -1:
        report.footer_missing = True
        report.truncated = True
        report.issues.append("Missing %%EOF end-of-file marker")
        report.repair_actions.append("append_eof_marker")
        return

    tail = data[eof + len(_PDF_EOF):]
    if not pdf_tail_is_padding(tail):
        report.trailing_garbage = True
        report.trailing_garbage_bytes = len(tail)
        report.issues.append(f"{len(tail)} bytes after the last %%EOF")
        report.repair_actions.append("trim_trailing_garbage")


# ══════════════════════════════════════════════════════════════
#  Null region detection
# ══════════════════════════════════════════════════════════════

def _check_null_regions(data: bytes, report: DamageReport):
    """Detect large null (zeroed-out) regions within the file."""
    if len(data) < 1024:
        return

    block_size = 4096
    null_bytes = 0
    total_checked = 0

    for i in range(0, len(data), block_size):
        block = data[i:i + block_size]
        total_checked += len(block)
        if block.count(0) > len(block) * 0.95:
            null_bytes += len(block)

    if total_checked > 0:
        report.null_region_percent = (null_bytes / total_checked) * 100
        if report.null_region_percent > 20:
            report.has_null_regions = True
            report.issues.append(
                f"{report.null_region_percent:.0f}% of file data is zeroed")


# ══════════════════════════════════════════════════════════════
#  Scoring and level computation
# ══════════════════════════════════════════════════════════════

def _compute_damage_level(report: DamageReport):
    """Compute overall damage score and level from individual flags."""
    score = 0.0

    if report.header_damaged:
        # Nothing recognizable at all vs. a displaced header
        score += 0.15 if report.leading_garbage_bytes else 0.70
    if report.footer_missing:
        score += 0.20
    if report.structure_broken:
        score += 0.20
    if report.truncated:
        score += 0.15
    if report.trailing_garbage:
        score += 0.05
    if report.has_null_regions:
        score += min(0.40, report.null_region_percent / 100 * 0.5)

    issue_count = sum([
        report.header_damaged, report.footer_missing,
        report.truncated, report.structure_broken,
        report.has_null_regions,
    ])
    if issue_count >= 3:
        score += 0.10

    report.damage_score = min(1.0, score)
    report.is_damaged = score > 0.0

    if score == 0:
        report.damage_level = "healthy"
    elif score <= 0.15:
        report.damage_level = "minor"
    elif score <= 0.35:
        report.damage_level = "moderate"
    elif score <= 0.65:
        report.damage_level = "severe"
    else:
        report.damage_level = "fatal"


def _assess_repairability(ext: str, report: DamageReport):
    """Determine if the damage is repairable."""
    if not report.is_damaged:
        report.repairable = False
        return

    info = FILE_TYPES.get(ext)
    if info is None or info.is_archive:
        report.repairable = report.local_header_count > 0
        return

    report.repairable = bool(report.repair_actions)
