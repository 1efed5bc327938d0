"""
Entry Decompressor — Inflate ZIP entry data, tolerating damage.

Strategy for Deflate (method 8), first success wins:
  1. Raw deflate (no zlib wrapper) — what the ZIP format specifies
  2. zlib / gzip wrapped deflate  — some producers mis-encode
  3. A cleanly cut stream          — raw inflate that stops without an
                                     error is kept as a truncated prefix
  4. Probing                       — drop 0..N leading bytes and cut the
                                     tail in decreasing steps, re-trying
                                     raw deflate, within a probe budget

Store (method 0) is the identity.  Unknown methods fail immediately.
"""

from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass
from typing import Optional

from .errors import DecodeError, DecodeFailure
from .signatures import CompressionMethod

logger = logging.getLogger(__name__)

DEFAULT_PROBE_BUDGET = 256
DEFAULT_MAX_SKIP = 16
# Tail cuts tried per leading-skip value
_TAIL_STEPS = 16

_RAW_WBITS = -zlib.MAX_WBITS
_AUTO_WBITS = 32 + zlib.MAX_WBITS     # zlib or gzip header


@dataclass
class InflateResult:
    """Outcome of a successful decompression."""
    content: bytes
    truncated: bool = False         # Only a prefix of the stream decoded
    strategy: str = "raw"           # raw, wrapped, prefix, probe, store
    skipped: int = 0                # Leading bytes dropped while probing
    cut: int = 0                    # Trailing bytes dropped while probing
    probes: int = 0


def decompress(data: bytes, method: CompressionMethod,
               probe_budget: int = DEFAULT_PROBE_BUDGET,
               max_skip: int = DEFAULT_MAX_SKIP) -> bytes:
    """Decompress *data*, raising DecodeError when nothing works."""
    return inflate_entry(data, method, probe_budget, max_skip).content


def inflate_entry(data: bytes, method: CompressionMethod,
                  probe_budget: int = DEFAULT_PROBE_BUDGET,
                  max_skip: int = DEFAULT_MAX_SKIP) -> InflateResult:
    """Like decompress() but reports how the bytes were obtained."""
    data = bytes(data)

    if method is CompressionMethod.STORE:
        return InflateResult(content=data, strategy="store")

    if method is not CompressionMethod.DEFLATE:
        raise DecodeError(DecodeFailure.UNSUPPORTED_METHOD,
                          f"method {method.name.lower()}")

    # 1. Raw deflate
    out, complete = _raw_inflate(data)
    if complete:
        return InflateResult(content=out, strategy="raw")
    prefix = out

    # 2. Wrapped deflate
    wrapped = _wrapped_inflate(data)
    if wrapped is not None:
        logger.debug("Inflated %d bytes with a zlib/gzip wrapper", len(data))
        return InflateResult(content=wrapped, strategy="wrapped")

    # 3. Stream ended early without corrupt codes
    if prefix:
        logger.debug("Stream cut short; kept %d-byte prefix", len(prefix))
        return InflateResult(content=prefix, truncated=True,
                             strategy="prefix")

    # 4. Probe
    result = _probe(data, probe_budget, max_skip)
    if result is not None:
        return result

    raise DecodeError(DecodeFailure.EXHAUSTED,
                      f"{len(data)} bytes, budget {probe_budget}")


# ─────────────────────────────────────────────────────────────
#  Inflate attempts
# ─────────────────────────────────────────────────────────────

def _raw_inflate(data: bytes) -> tuple[Optional[bytes], bool]:
    """Return (output, reached_end_of_stream).  Output is None on error."""
    d = zlib.decompressobj(_RAW_WBITS)
    try:
        out = d.decompress(data)
        out += d.flush()
    except zlib.error:
        return None, False
    return out, d.eof


def _wrapped_inflate(data: bytes) -> Optional[bytes]:
    d = zlib.decompressobj(_AUTO_WBITS)
    try:
        out = d.decompress(data)
        out += d.flush()
    except zlib.error:
        return None
    return out if d.eof else None


def _probe(data: bytes, budget: int, max_skip: int) -> Optional[InflateResult]:
    """Search (leading skip, tail cut) pairs for a decodable stream."""
    total = len(data)
    if total == 0 or budget <= 0:
        return None

    probes = 0
    for skip in range(0, min(max_skip, total - 1) + 1):
        span = total - skip
        step = max(1, span // _TAIL_STEPS)
        end = total
        while end > skip:
            if skip == 0 and end == total:
                # Already tried as the plain raw attempt
                end -= step
                continue
            if probes >= budget:
                logger.debug("Probe budget of %d exhausted", budget)
                return None
            probes += 1
            out, complete = _raw_inflate(data[skip:end])
            if out:
                logger.debug("Probe %d decoded %d bytes (skip=%d, cut=%d)",
                             probes, len(out), skip, total - end)
                return InflateResult(
                    content=out,
                    truncated=not complete,
                    strategy="probe",
                    skipped=skip,
                    cut=total - end,
                    probes=probes,
                )
            end -= step
    return None
