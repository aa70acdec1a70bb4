"""
Client-side gzip pre-compression of outgoing file parts.

Compressed parts are tagged twice: the part's file name gains a ``.gz``
suffix and the request carries a scalar ``compressed=true`` field. The worker
relies on both markers to gunzip a part, so the field is only sent when at
least one part really is gzipped, and only gzipped parts carry the suffix.
"""

from __future__ import annotations

import gzip
import logging
import zlib
from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import CompressionError

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = 6
GZIP_SUFFIX = ".gz"
GZIP_CONTENT_TYPE = "application/gzip"
COMPRESSED_FIELD = "compressed"


@dataclass(frozen=True)
class CompressionOutcome:
    original_size: int
    compressed_size: int
    ratio_percent: float


@dataclass(frozen=True)
class CompressedPayload:
    content: bytes
    outcome: CompressionOutcome


def ratio_percent(original_size: int, compressed_size: int) -> float:
    """Share of bytes saved, in percent. Negative when gzip expanded the input."""
    if original_size <= 0:
        return 0.0
    return (1 - compressed_size / original_size) * 100


def compress_bytes(payload: bytes, level: int = DEFAULT_LEVEL) -> CompressedPayload:
    """
    Gzip ``payload`` deterministically.

    The gzip header's mtime is pinned to zero so identical input always
    produces identical output.

    Args:
        payload: Raw bytes of one file part
        level: zlib compression level (1-9)

    Returns:
        CompressedPayload with the gzip stream and its size accounting

    Raises:
        CompressionError: If the compressor rejects the input or settings
    """
    try:
        compressed = gzip.compress(payload, compresslevel=level, mtime=0)
    except (zlib.error, ValueError, TypeError, MemoryError) as exc:
        raise CompressionError(f"Compression failed: {exc}") from exc

    outcome = CompressionOutcome(
        original_size=len(payload),
        compressed_size=len(compressed),
        ratio_percent=ratio_percent(len(payload), len(compressed)),
    )
    logger.debug(f"Compressed {outcome.original_size} -> {outcome.compressed_size} bytes ({outcome.ratio_percent:.1f}% saved)")
    return CompressedPayload(content=compressed, outcome=outcome)


def decompress_bytes(payload: bytes) -> bytes:
    try:
        return gzip.decompress(payload)
    except (OSError, EOFError, zlib.error) as exc:
        raise CompressionError(f"Decompression failed: {exc}") from exc


def should_compress(filename: str, size: int, *, min_size: int = 0, skip_suffixes: Iterable[str] = ()) -> bool:
    """
    Decide whether a part is worth compressing.

    Tiny parts and formats that are already compressed (archives, JPEG, PNG)
    gain nothing from gzip and only cost CPU time.
    """
    if size < min_size:
        return False
    lowered = filename.lower()
    return not any(lowered.endswith(suffix.lower()) for suffix in skip_suffixes)


def summarize(outcomes: Sequence[CompressionOutcome]) -> CompressionOutcome:
    original = sum(outcome.original_size for outcome in outcomes)
    compressed = sum(outcome.compressed_size for outcome in outcomes)
    return CompressionOutcome(original, compressed, ratio_percent(original, compressed))
