"""
Tests for gzip pre-compression helpers.
"""

import gzip
import os

import pytest

from pdf_tool_pipeline.compression import (
    compress_bytes,
    decompress_bytes,
    ratio_percent,
    should_compress,
    summarize,
)
from pdf_tool_pipeline.errors import CompressionError


class TestCompressBytes:
    """Tests for compress_bytes / decompress_bytes."""

    @pytest.mark.parametrize("payload", [b"", b"x", os.urandom(4096), b"%PDF-1.4 " * 2000])
    def test_round_trip_is_exact(self, payload):
        """Decompressing a compressed buffer yields the original bytes."""
        compressed = compress_bytes(payload)
        assert decompress_bytes(compressed.content) == payload
        assert compressed.outcome.original_size == len(payload)
        assert compressed.outcome.compressed_size == len(compressed.content)

    def test_output_is_standard_gzip(self):
        """Any gzip reader accepts the output."""
        assert gzip.decompress(compress_bytes(b"hello world").content) == b"hello world"

    def test_output_is_deterministic(self):
        """Identical input yields identical output (mtime is pinned)."""
        assert compress_bytes(b"same input").content == compress_bytes(b"same input").content

    def test_invalid_level_raises_compression_error(self):
        """Compressor failures surface as CompressionError."""
        with pytest.raises(CompressionError):
            compress_bytes(b"data", level=42)

    def test_corrupt_input_raises_compression_error(self):
        """Garbage is rejected on decompression."""
        with pytest.raises(CompressionError):
            decompress_bytes(b"not gzip at all")


class TestCompressionAccounting:
    """Tests for ratio_percent, summarize and should_compress."""

    def test_ratio_is_percent_saved(self):
        """A 100 -> 25 byte compression saves 75%."""
        assert ratio_percent(100, 25) == pytest.approx(75.0)

    def test_ratio_of_empty_input_is_zero(self):
        """No bytes, no savings."""
        assert ratio_percent(0, 20) == 0.0

    def test_ratio_can_be_negative(self):
        """gzip can expand tiny inputs."""
        assert ratio_percent(10, 30) < 0

    def test_summarize_totals_outcomes(self):
        """Summary adds sizes across parts."""
        first = compress_bytes(b"a" * 1000).outcome
        second = compress_bytes(b"b" * 3000).outcome
        summary = summarize([first, second])
        assert summary.original_size == 4000
        assert summary.compressed_size == first.compressed_size + second.compressed_size

    def test_skips_already_compressed_formats(self):
        """Archives and images are sent as-is."""
        assert not should_compress("scan.JPG", 1000, skip_suffixes=[".jpg"])
        assert should_compress("doc.pdf", 1000, skip_suffixes=[".jpg"])

    def test_skips_small_parts(self):
        """Parts below the minimum size are not compressed."""
        assert not should_compress("doc.pdf", 10, min_size=100)
