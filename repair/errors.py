"""
Recovery error types.

None of these cross the public ``repair()`` boundary: each is caught by
the stage above the one that raised it and turned into a report note.
"""

from __future__ import annotations

import enum


class RepairError(Exception):
    """Base class for recoverable container errors."""


class DecodeFailure(enum.Enum):
    EXHAUSTED = "exhausted"
    UNSUPPORTED_METHOD = "unsupported_method"


class DecodeError(RepairError):
    """An entry's compressed bytes could not be inflated."""

    def __init__(self, reason: DecodeFailure, detail: str = ""):
        self.reason = reason
        self.detail = detail
        msg = reason.value
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class MalformedEntryError(RepairError):
    """A local-header candidate that cannot describe a real entry."""

    def __init__(self, offset: int, reason: str):
        self.offset = offset
        self.reason = reason
        super().__init__(f"offset 0x{offset:X}: {reason}")


class StructuredOpenError(RepairError):
    """The central directory could not be used to open the archive."""
