"""
Error taxonomy for the upload/processing pipeline.

Every failure surfaced by :class:`~pdf_tool_pipeline.pipeline.ProcessingPipeline`
is one of the kinds below. The orchestrator stamps the phase that was active
when the error happened onto the exception before re-raising it, so callers can
tell an upload failure from a retrieval failure without parsing messages.

Kinds:
    - ValidationError: the caller built an invalid request; raised before any I/O
    - NetworkError: transport-level failure (DNS, reset, offline)
    - TransferTimeout: a configured timeout elapsed (a NetworkError)
    - RemoteError: the worker answered with a non-success status
    - OperationCancelled: explicit user cancellation, not a failure
    - CompressionError: gzip failed; the pipeline falls back to raw payloads
"""

from __future__ import annotations

import json
from typing import Any, Optional


class PipelineError(Exception):
    """Base class for every error the pipeline raises on purpose."""

    kind = "error"

    def __init__(self, message: str, *, phase: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase


class ValidationError(PipelineError):
    kind = "validation"


class NetworkError(PipelineError):
    kind = "network"


class TransferTimeout(NetworkError):
    kind = "timeout"


class RemoteError(PipelineError):
    kind = "remote"

    def __init__(self, message: str, *, status_code: Optional[int] = None, phase: Optional[str] = None) -> None:
        super().__init__(message, phase=phase)
        self.status_code = status_code

    @classmethod
    def from_body(cls, status_code: int, body: bytes) -> "RemoteError":
        """
        Build an error from a failed response body.

        The worker reports failures as ``{"error": "..."}``; binary endpoints
        send the same JSON through the binary channel. Anything unparseable
        degrades to a generic status-coded message.

        Args:
            status_code: HTTP status of the failed response
            body: Raw response body

        Returns:
            RemoteError carrying the server message when one was found
        """
        message = extract_error_message(body)
        return cls(message or f"Server Error {status_code}", status_code=status_code)


class OperationCancelled(PipelineError):
    kind = "cancelled"

    def __init__(self, message: str = "Operation cancelled", *, phase: Optional[str] = None) -> None:
        super().__init__(message, phase=phase)


class CompressionError(PipelineError):
    kind = "compression"


_MESSAGE_KEYS = ("error", "detail", "message")


def extract_error_message(body: bytes) -> Optional[str]:
    if not body:
        return None
    try:
        payload: Any = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    for key in _MESSAGE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None
