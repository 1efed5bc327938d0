"""
Parallel Entry Recovery — multiprocessing-based per-entry recovery.

Every entry's recovery is independent of every other's, so a large
archive can be spread over worker processes:
  • One task per candidate, dispatched to a multiprocessing Pool.
  • Results come back in completion order, tagged with the candidate's
    discovery index.
  • The coordinator re-orders by index at collection time, so the rebuilt
    archive keeps discovery order whatever finished first.

Inflate and regex salvage are CPU-bound; threads would serialize on the GIL.
"""

from __future__ import annotations

import os
import logging
import multiprocessing as mp

from .config import RepairConfig
from .entry_recovery import (
    EntryCandidate,
    RecoveredEntry,
    SourceKind,
    recover_entry,
)

logger = logging.getLogger(__name__)


def optimal_worker_count(num_entries: int, config: RepairConfig) -> int:
    """
    Determine optimal number of worker processes.

    Rules:
      • At least 1 worker.
      • Each worker should get at least min_entries_per_worker entries.
      • Never exceed the CPU count.
      • Cap at max_workers to avoid excessive process overhead.
    """
    if config.workers > 0:
        return max(1, min(config.workers, config.max_workers, num_entries))

    cpu_count = os.cpu_count() or 2
    max_by_size = max(1, num_entries // max(1, config.min_entries_per_worker))
    return min(max_by_size, cpu_count, config.max_workers)


def recover_entries(candidates: list[EntryCandidate], config: RepairConfig
                    ) -> list[tuple[RecoveredEntry, list[str]]]:
    """Recover all candidates, returning results in discovery order."""
    workers = optimal_worker_count(len(candidates), config)
    if workers <= 1 or len(candidates) <= 1:
        collected = [_worker_recover((c, config)) for c in candidates]
        return [(entry, notes) for _index, entry, notes in collected]

    logger.info("Recovering %d entries with %d worker processes",
                len(candidates), workers)
    chunksize = max(1, len(candidates) // (workers * 4))
    tasks = [(c, config) for c in candidates]
    with mp.Pool(processes=workers) as pool:
        collected = list(pool.imap_unordered(_worker_recover, tasks,
                                             chunksize=chunksize))
    collected.sort(key=lambda item: item[0])
    return [(entry, notes) for _index, entry, notes in collected]


def _worker_recover(task: tuple[EntryCandidate, RepairConfig]):
    """
    Recover one entry and tag it with its index (pool worker or in-process).

    An unexpected failure becomes a placeholder for this entry only.
    """
    candidate, config = task
    try:
        entry, notes = recover_entry(candidate, config)
    except Exception as e:
        logger.error("Worker failed on %s: %s", candidate.path, e,
                     exc_info=True)
        entry = RecoveredEntry(candidate.path, b"", SourceKind.PLACEHOLDER,
                               truncated=True, method=candidate.method)
        notes = [f"{candidate.path}: recovery worker failed ({e}); "
                 f"replaced with an empty placeholder"]
    return candidate.index, entry, notes
