"""
Single-request upload transport with byte-level progress and cancellation.

:class:`UploadTransport` performs one multipart POST at a time through an
``httpx.AsyncClient``. The multipart body is encoded by httpx, then re-streamed
in fixed-size chunks so every chunk handed to the network layer produces a
:class:`~pdf_tool_pipeline.rate.ProgressSample`.

Cancellation aborts the in-flight request task. Once :meth:`UploadTransport.cancel`
has returned, the progress callback is never invoked again for that request,
even if the socket has not physically closed yet.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from .cancellation import CancellationToken
from .errors import NetworkError, OperationCancelled, RemoteError, TransferTimeout, ValidationError
from .models import ResponseKind
from .rate import ProgressSample

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSample], None]


@dataclass(frozen=True)
class NamedPayload:
    """
    One multipart entry: either a file part or a scalar form field.

    Attributes:
        name: Form field name (``file`` for tool inputs)
        value: Scalar value for form fields
        content: Raw bytes for file parts
        filename: File name announced for file parts
        content_type: MIME type announced for file parts
    """

    name: str
    value: Optional[str] = None
    content: Optional[bytes] = field(default=None, repr=False)
    filename: Optional[str] = None
    content_type: str = "application/octet-stream"

    @property
    def is_file(self) -> bool:
        return self.content is not None

    @property
    def size(self) -> int:
        return len(self.content) if self.content is not None else 0

    @classmethod
    def scalar(cls, name: str, value: Any) -> "NamedPayload":
        return cls(name=name, value=encode_field_value(value))

    @classmethod
    def file(cls, name: str, content: bytes, filename: str, content_type: str = "application/pdf") -> "NamedPayload":
        return cls(name=name, content=content, filename=filename, content_type=content_type)

    @classmethod
    def from_path(cls, path: Union[str, Path], name: str = "file", content_type: str = "application/pdf") -> "NamedPayload":
        path = Path(path)
        return cls.file(name, path.read_bytes(), path.name, content_type)


@dataclass(frozen=True)
class TransferRequest:
    endpoint: str
    payloads: Tuple[NamedPayload, ...]
    response_kind: ResponseKind = ResponseKind.STRUCTURED

    @property
    def files(self) -> List[NamedPayload]:
        return [payload for payload in self.payloads if payload.is_file]


@dataclass(frozen=True)
class TransferResponse:
    status_code: int
    kind: ResponseKind
    data: Optional[Dict[str, Any]] = None
    content: Optional[bytes] = field(default=None, repr=False)
    headers: Dict[str, str] = field(default_factory=dict)


def encode_field_value(value: Any) -> str:
    """Encode a scalar option the way the worker parses form fields."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    if value is None:
        return ""
    return str(value)


def build_timeout(connect: Optional[float], write: Optional[float], read: Optional[float]) -> httpx.Timeout:
    return httpx.Timeout(connect=connect, read=read, write=write, pool=connect)


def encode_multipart(payloads: Sequence[NamedPayload]) -> Tuple[bytes, str]:
    """
    Encode payloads as a ``multipart/form-data`` body.

    httpx serialises scalar fields before file parts; relative order within
    each group is preserved.

    Returns:
        Tuple of (body bytes, Content-Type header with boundary)
    """
    data: Dict[str, Union[str, List[str]]] = {}
    files: List[Tuple[str, Tuple[str, bytes, str]]] = []
    for payload in payloads:
        if payload.is_file:
            files.append((payload.name, (payload.filename or payload.name, payload.content or b"", payload.content_type)))
            continue
        existing = data.get(payload.name)
        if existing is None:
            data[payload.name] = payload.value or ""
        elif isinstance(existing, list):
            existing.append(payload.value or "")
        else:
            data[payload.name] = [existing, payload.value or ""]

    encoded = httpx.Request("POST", "http://multipart.invalid", data=data, files=files)
    body = b"".join(encoded.stream)  # type: ignore[arg-type]
    return body, encoded.headers["Content-Type"]


class UploadTransport:
    """
    Observable wrapper around one HTTP upload.

    The transport owns the abort handle of its in-flight request and nothing
    else. Starting a second send while one is active is a programming error.

    Attributes:
        client: Shared ``httpx.AsyncClient`` used for the request
        chunk_size: Number of body bytes handed to httpx per progress sample
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        chunk_size: int = 64 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.client = client
        self.chunk_size = chunk_size
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def send(self, request: TransferRequest, on_progress: Optional[ProgressCallback] = None) -> TransferResponse:
        """
        Upload ``request`` to its endpoint and decode the response.

        Args:
            request: Payloads and expected response kind
            on_progress: Called with every progress sample until completion or cancellation

        Returns:
            TransferResponse holding parsed JSON or the raw artifact bytes

        Raises:
            RuntimeError: If another send is already in flight
            ValidationError: If the request carries no payloads
            OperationCancelled: If :meth:`cancel` was called
            NetworkError: On transport-level failure
            RemoteError: On a non-success status or an unreadable structured body
        """
        if self.in_flight:
            raise RuntimeError("UploadTransport already has a request in flight")
        if not request.payloads:
            raise ValidationError("Transfer request has no payloads")

        token = CancellationToken()
        self._token = token
        self._task = asyncio.ensure_future(self._perform(request, on_progress, token))
        try:
            return await self._task
        except asyncio.CancelledError:
            if token.is_cancelled():
                raise OperationCancelled("Upload cancelled") from None
            raise
        finally:
            self._task = None
            self._token = None

    def cancel(self) -> bool:
        """
        Abort the in-flight request, if any.

        Returns:
            True if a request was cancelled by this call
        """
        token, task = self._token, self._task
        if token is None or task is None or task.done():
            return False
        if not token.cancel():
            return False
        logger.info("Upload cancelled by caller")
        task.cancel()
        return True

    async def _perform(
        self,
        request: TransferRequest,
        on_progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> TransferResponse:
        body, content_type = encode_multipart(request.payloads)
        total = len(body)
        headers = {"Content-Type": content_type, "Content-Length": str(total)}
        logger.info(f"Uploading {total} bytes to {request.endpoint}")

        http_request = self.client.build_request(
            "POST",
            request.endpoint,
            headers=headers,
            content=self._stream_body(body, on_progress, token),
        )
        try:
            response = await self.client.send(http_request)
        except httpx.TimeoutException as exc:
            raise TransferTimeout(f"Request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network Error: {exc}") from exc

        if token.is_cancelled():
            raise OperationCancelled("Upload cancelled")
        return self._decode(response, request.response_kind)

    async def _stream_body(
        self,
        body: bytes,
        on_progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> AsyncIterator[bytes]:
        total = len(body)

        def emit(sent: int) -> None:
            if token.is_cancelled():
                raise OperationCancelled("Upload cancelled")
            if on_progress is not None:
                on_progress(ProgressSample(bytes_transferred=sent, total_bytes=total, timestamp=self._clock()))

        emit(0)
        sent = 0
        for offset in range(0, total, self.chunk_size):
            if token.is_cancelled():
                raise OperationCancelled("Upload cancelled")
            chunk = body[offset : offset + self.chunk_size]
            yield chunk
            sent += len(chunk)
            emit(sent)

    def _decode(self, response: httpx.Response, kind: ResponseKind) -> TransferResponse:
        status = response.status_code
        headers = dict(response.headers)
        if not 200 <= status < 300:
            error = RemoteError.from_body(status, response.content)
            logger.warning(f"Worker responded {status}: {error.message}")
            raise error

        if kind is ResponseKind.BINARY:
            return TransferResponse(status_code=status, kind=kind, content=response.content, headers=headers)

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise RemoteError("Invalid response from server", status_code=status) from exc
        if not isinstance(data, dict):
            raise RemoteError("Invalid response from server", status_code=status)
        return TransferResponse(status_code=status, kind=kind, data=data, headers=headers)
