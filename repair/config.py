"""
Repair configuration.
"""

from dataclasses import dataclass

from .decompressor import DEFAULT_MAX_SKIP, DEFAULT_PROBE_BUDGET
from .rebuilder import DEFAULT_COMPRESS_LEVEL
from .xml_salvage import MIN_TEXT_CHARS


@dataclass
class RepairConfig:
    """Tuning knobs for one repair run."""
    probe_budget: int = DEFAULT_PROBE_BUDGET     # Max inflate probes per entry
    max_skip_bytes: int = DEFAULT_MAX_SKIP       # Leading bytes a probe may drop
    min_text_chars: int = MIN_TEXT_CHARS         # Below this → placeholder text
    workers: int = 1                # 1 = in-process, 0 = auto-detect
    max_workers: int = 8
    min_entries_per_worker: int = 16
    compress_level: int = DEFAULT_COMPRESS_LEVEL
    check_media: bool = True        # Decode-check recovered images
