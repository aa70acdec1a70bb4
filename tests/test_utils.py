"""
Tests for file name, URL and formatting helpers.
"""

import pytest

from pdf_tool_pipeline.utils import (
    format_bytes,
    format_time,
    resolve_api_url,
    sanitize_filename,
    with_extension,
)


class TestSanitizeFilename:
    """Tests for sanitize_filename."""

    def test_strips_directories(self):
        """Path traversal cannot escape the download directory."""
        assert sanitize_filename("../../etc/passwd") == "passwd"
        assert sanitize_filename("..\\windows\\evil.pdf") == "evil.pdf"

    def test_replaces_unsafe_characters(self):
        """Reserved characters become hyphens."""
        assert sanitize_filename("report:final?.pdf") == "report-final-.pdf"

    def test_keeps_readable_names(self):
        """Spaces and parentheses survive."""
        assert sanitize_filename("My Report (1).pdf") == "My Report (1).pdf"

    def test_empty_name_falls_back(self):
        """A name that sanitizes to nothing uses the fallback."""
        assert sanitize_filename("///") == "document.pdf"
        assert sanitize_filename("..", fallback="x.pdf") == "x.pdf"


class TestWithExtension:
    """Tests for with_extension."""

    def test_adds_missing_extension(self):
        assert with_extension("informe", ".pdf") == "informe.pdf"

    def test_replaces_other_extension(self):
        assert with_extension("slides.pptx", ".pdf") == "slides.pdf"

    def test_keeps_matching_extension(self):
        """Matching is case-insensitive."""
        assert with_extension("scan.PDF", ".pdf") == "scan.PDF"

    def test_accepts_extension_without_dot(self):
        assert with_extension("archive", "zip") == "archive.zip"

    def test_dotted_name_is_not_truncated(self):
        """A tail that is not a document extension stays part of the name."""
        assert with_extension("report.v2", ".pdf") == "report.v2.pdf"
        assert with_extension("minutes.2024.03", ".pdf") == "minutes.2024.03.pdf"


class TestResolveApiUrl:
    """Tests for resolve_api_url."""

    def test_worker_prefix_is_replaced(self):
        """Worker endpoints go straight to the worker host."""
        url = resolve_api_url("/api/worker/ocr-pdf", "http://site", "http://vps:3001/api/")
        assert url == "http://vps:3001/api/ocr-pdf"

    def test_relative_endpoint_uses_site_base(self):
        """Without a worker URL, endpoints are joined to the site base."""
        assert resolve_api_url("/api/worker/ocr-pdf", "http://site/") == "http://site/api/worker/ocr-pdf"

    def test_non_worker_endpoint_ignores_worker_url(self):
        assert resolve_api_url("/api/other", "http://site", "http://vps/api") == "http://site/api/other"

    def test_absolute_endpoint_passes_through(self):
        assert resolve_api_url("https://elsewhere/x", "http://site", "http://vps") == "https://elsewhere/x"


class TestFormatting:
    """Tests for format_bytes and format_time."""

    @pytest.mark.parametrize(
        "value,expected",
        [(0, "0 Bytes"), (512, "512 Bytes"), (1536, "1.5 KB"), (1048576, "1 MB"), (5 * 1024**3, "5 GB")],
    )
    def test_format_bytes(self, value, expected):
        assert format_bytes(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [(None, "--:--"), (-1, "--:--"), (float("inf"), "--:--"), (0, "0s"), (42.7, "42s"), (75, "1m 15s")],
    )
    def test_format_time(self, value, expected):
        assert format_time(value) == expected
