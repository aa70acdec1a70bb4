"""
Utility functions for file names, URLs and human-readable sizes.

This module provides helper functions for:
- Sanitizing user-provided file names for safe local saving
- Splitting and replacing file extensions
- Resolving worker endpoints against the configured base URLs
- Formatting byte counts and durations for progress displays
"""

from __future__ import annotations

import math
import re
from pathlib import Path
from typing import Optional

# Pattern to match characters that are not safe for local file names
# Allows: alphanumeric characters, dots, underscores, hyphens and spaces
SANITIZE_PATTERN = re.compile(r"[^\w. ()-]+")

WORKER_PREFIX = "/api/worker"

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]

# Extensions of the inputs and artifacts the worker tools handle
DOCUMENT_EXTENSIONS = frozenset(
    {
        ".pdf", ".zip", ".gz",
        ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt",
        ".html", ".htm", ".txt",
        ".jpg", ".jpeg", ".png", ".webp", ".tif", ".tiff",
    }
)


def sanitize_filename(filename: str, fallback: str = "document.pdf") -> str:
    """
    Generate a safe local file name from a server- or user-provided name.

    Directory components are discarded so a hostile ``fileName`` such as
    ``../../etc/passwd`` can only ever produce a name inside the target folder.

    Args:
        filename: The original file name
        fallback: Name to return if sanitization results in an empty string

    Returns:
        A file name without path separators or the fallback value

    Example:
        >>> sanitize_filename("../report:final?.pdf")
        "report-final-.pdf"
        >>> sanitize_filename("///")
        "document.pdf"
    """
    name = filename.replace("\\", "/").split("/")[-1]
    cleaned = SANITIZE_PATTERN.sub("-", name.strip())
    cleaned = cleaned.strip(" .")
    return cleaned or fallback


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Args:
        filename: The filename to split (can include path)

    Returns:
        A tuple of (stem, extension) where extension includes the dot

    Example:
        >>> split_extension("document.pdf")
        ("document", ".pdf")
        >>> split_extension("/path/to/file.tar.gz")
        ("file.tar", ".gz")
    """
    path = Path(filename)
    return path.stem, path.suffix


def with_extension(filename: str, extension: str) -> str:
    """
    Ensure ``filename`` ends with ``extension``.

    A different document extension is replaced; any other dotted tail
    (``report.v2``) is part of the name and the extension is appended.

    Example:
        >>> with_extension("informe", ".pdf")
        "informe.pdf"
        >>> with_extension("slides.pptx", ".pdf")
        "slides.pdf"
        >>> with_extension("report.v2", ".pdf")
        "report.v2.pdf"
    """
    if not extension:
        return filename
    if not extension.startswith("."):
        extension = f".{extension}"
    stem, suffix = split_extension(filename)
    if suffix.lower() == extension.lower():
        return filename
    if suffix.lower() in DOCUMENT_EXTENSIONS and stem:
        return f"{stem}{extension}"
    return f"{filename}{extension}"


def resolve_api_url(endpoint: str, api_base_url: str = "", worker_url: Optional[str] = None) -> str:
    """
    Resolve a tool endpoint to an absolute URL.

    Worker endpoints (``/api/worker/...``) are sent straight to the worker
    host when one is configured, bypassing the site proxy. Everything else is
    joined to the site base URL. Absolute URLs are returned unchanged.

    Args:
        endpoint: Endpoint path such as ``/api/worker/compress-pdf``
        api_base_url: Base URL of the site that proxies ``/api`` routes
        worker_url: Direct worker base URL, e.g. ``http://10.0.0.5:3001/api``

    Returns:
        Absolute URL for the request

    Example:
        >>> resolve_api_url("/api/worker/ocr-pdf", "http://site", "http://vps:3001/api/")
        "http://vps:3001/api/ocr-pdf"
    """
    if endpoint.startswith(("http://", "https://")):
        return endpoint

    if not endpoint.startswith("/"):
        endpoint = f"/{endpoint}"

    if worker_url and endpoint.startswith(WORKER_PREFIX):
        base = worker_url.rstrip("/")
        path = endpoint[len(WORKER_PREFIX):]
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{base}{path}"

    return f"{api_base_url.rstrip('/')}{endpoint}"


def format_bytes(num_bytes: float, decimals: int = 2) -> str:
    """
    Format a byte count with binary units.

    Example:
        >>> format_bytes(0)
        "0 Bytes"
        >>> format_bytes(1536)
        "1.5 KB"
    """
    if num_bytes <= 0:
        return "0 Bytes"

    decimals = max(decimals, 0)
    index = 0
    value = float(num_bytes)
    while value >= 1024 and index < len(_SIZE_UNITS) - 1:
        value /= 1024
        index += 1
    value = round(value, decimals)
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".") if decimals else f"{value:.0f}"
    return f"{text} {_SIZE_UNITS[index]}"


def format_time(seconds: Optional[float]) -> str:
    """
    Format a remaining-time estimate.

    Unknown, infinite or negative estimates render as ``--:--``.

    Example:
        >>> format_time(75)
        "1m 15s"
        >>> format_time(None)
        "--:--"
    """
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "--:--"

    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
