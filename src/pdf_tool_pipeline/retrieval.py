"""
Artifact retrieval and local saving.

After the worker has produced a result, :class:`ArtifactRetriever` downloads
it by ``fileId`` and hands the bytes to an :class:`ArtifactSink`, the local
equivalent of a browser "save as" action. The default
:class:`LocalDirectorySink` writes through a transient temporary file that is
renamed into place, so no partial artifact is ever visible under its final
name and no temporary file outlives the save.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Protocol

import httpx

from .errors import NetworkError, RemoteError, TransferTimeout
from .rate import ProgressSample
from .utils import resolve_api_url, sanitize_filename, split_extension

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactDescriptor:
    file_id: str
    file_name: str


@dataclass(frozen=True)
class Artifact:
    file_name: str
    content: bytes = field(repr=False)
    media_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class ArtifactSink(Protocol):
    def save(self, content: bytes, file_name: str) -> Path: ...


class LocalDirectorySink:
    """
    Save artifacts into a download directory.

    Existing files are never overwritten: a clash on ``report.pdf`` produces
    ``report (1).pdf``, ``report (2).pdf`` and so on, like a browser would.

    Attributes:
        directory: Target directory, created on first save
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def save(self, content: bytes, file_name: str) -> Path:
        """
        Write ``content`` under a sanitized, unique name.

        Args:
            content: Artifact bytes
            file_name: Desired file name (directory components are dropped)

        Returns:
            Path of the saved file

        Raises:
            OSError: If the directory cannot be created or written
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=".partial-", dir=self.directory)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            destination = self._unique_destination(sanitize_filename(file_name))
            os.replace(temp_path, destination)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        logger.info(f"Saved artifact to {destination} ({len(content)} bytes)")
        return destination

    def _unique_destination(self, file_name: str) -> Path:
        candidate = self.directory / file_name
        stem, suffix = split_extension(file_name)
        counter = 1
        while candidate.exists():
            candidate = self.directory / f"{stem} ({counter}){suffix}"
            counter += 1
        return candidate


def save_locally(content: bytes, file_name: str, sink: Optional[ArtifactSink] = None, directory: Path | str = "downloads") -> Path:
    target = sink or LocalDirectorySink(directory)
    return target.save(content, file_name)


class ArtifactRetriever:
    """
    Download finished artifacts from the worker.

    Attributes:
        client: Shared ``httpx.AsyncClient``
        download_path: Path template containing ``{file_id}``
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_base_url: str = "",
        worker_url: Optional[str] = None,
        download_path: str = "/api/worker/download/{file_id}",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.api_base_url = api_base_url
        self.worker_url = worker_url
        self.download_path = download_path
        self._clock = clock

    def download_url(self, file_id: str) -> str:
        return resolve_api_url(self.download_path.format(file_id=file_id), self.api_base_url, self.worker_url)

    async def retrieve(
        self,
        descriptor: ArtifactDescriptor,
        on_progress: Optional[Callable[[ProgressSample], None]] = None,
    ) -> Artifact:
        """
        Fetch the artifact identified by ``descriptor``.

        The body is streamed; when the server announces a ``Content-Length``
        every received chunk is reported through ``on_progress``.

        Args:
            descriptor: ``fileId``/``fileName`` pair returned by the worker
            on_progress: Optional byte-level progress callback

        Returns:
            Artifact with the downloaded bytes

        Raises:
            RemoteError: If the download endpoint answers with a non-success status
            NetworkError: On transport-level failure
        """
        url = self.download_url(descriptor.file_id)
        logger.info(f"Retrieving artifact {descriptor.file_id} from {url}")
        try:
            async with self.client.stream("GET", url) as response:
                if not 200 <= response.status_code < 300:
                    body = await response.aread()
                    raise RemoteError.from_body(response.status_code, body)

                total = int(response.headers.get("Content-Length") or 0)
                received = 0
                chunks = []
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    received += len(chunk)
                    if on_progress is not None and total:
                        on_progress(ProgressSample(min(received, total), total, self._clock()))
                media_type = response.headers.get("Content-Type")
        except httpx.TimeoutException as exc:
            raise TransferTimeout(f"Download timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network Error: {exc}") from exc

        return Artifact(file_name=descriptor.file_name, content=b"".join(chunks), media_type=media_type)
