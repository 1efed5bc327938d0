# repair — Damaged Office Document & ZIP Container Recovery Engine
# Pure-Python recovery of DOCX / XLSX / PPTX / ZIP containers from raw bytes.
#
# Architecture (bottom → top):
#   signatures      — ZIP record signatures, part kinds, file-type detection
#   byte_scanner    — Local-file-header carving (central directory not needed)
#   decompressor    — Store / raw-deflate inflate with damage probing
#   xml_salvage     — Tag balancing + per-part-kind text extraction
#   media_check     — Pillow decode check for recovered images
#   rebuilder       — Fresh, valid ZIP from recovered entries
#   entry_recovery  — One candidate → one RecoveredEntry
#   parallel        — Multiprocessing per-entry recovery
#   pipeline        — State machine + repair() entry point
#   damage_detector — Container damage analysis (ZIP, PDF)
#   file_repair     — Caller layer: dispatch by file type, status, preview

from .pipeline import RepairOutcome, RepairPipeline, RepairReport, repair
from .config import RepairConfig

__all__ = [
    "RepairConfig",
    "RepairOutcome",
    "RepairPipeline",
    "RepairReport",
    "repair",
]
