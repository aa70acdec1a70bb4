"""
Pytest configuration and fixtures for PDF Tool Pipeline tests.
"""

from typing import Callable, Dict, List

import httpx
import pytest

from pdf_tool_pipeline.configuration import get_tool_config, load_settings
from pdf_tool_pipeline.models import PipelineSnapshot


class RecordingNotifier:
    """Notifier double that records every message by level."""

    def __init__(self):
        self.messages: List[tuple] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def of(self, level: str) -> List[str]:
        return [message for kind, message in self.messages if kind == level]


class FakeWorker:
    """
    In-process worker behind ``httpx.MockTransport``.

    Records every upload body and serves uploaded artifacts back from
    ``/api/worker/download/{fileId}``.
    """

    def __init__(self):
        self.uploads: List[httpx.Request] = []
        self.bodies: List[bytes] = []
        self.artifacts: Dict[str, bytes] = {}
        self.upload_handler: Callable[[httpx.Request], httpx.Response] = self.structured

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.uploads.append(request)
            self.bodies.append(request.content)
            return self.upload_handler(request)
        file_id = request.url.path.rsplit("/", 1)[-1]
        if file_id not in self.artifacts:
            return httpx.Response(404, json={"success": False, "error": "File not found"})
        return httpx.Response(200, content=self.artifacts[file_id], headers={"Content-Type": "application/pdf"})

    def structured(self, request: httpx.Request) -> httpx.Response:
        self.artifacts["abc123"] = b"%PDF-1.4 processed"
        return httpx.Response(200, json={"success": True, "fileId": "abc123", "fileName": "doc-processed.pdf", "resultSize": 18})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def worker():
    return FakeWorker()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a fake host with no settle delay and small chunks."""
    return load_settings(
        {
            "api": {"base_url": "http://testserver"},
            "transport": {"chunk_size": 1024},
            "progress": {"settle_delay": 0},
            "downloads": {"directory": str(tmp_path / "downloads")},
        },
        use_env=False,
    )


@pytest.fixture
def grayscale_tool(settings):
    return get_tool_config("grayscale-pdf", settings)


@pytest.fixture
def sample_pdf(tmp_path):
    """Write a compressible PDF-like file of about 10 KB and return its path."""
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.4\n" + b"0123456789abcdef" * 640 + b"\n%%EOF")
    return path


@pytest.fixture
def snapshots():
    return []


@pytest.fixture
def record(snapshots) -> Callable[[PipelineSnapshot], None]:
    return snapshots.append

