"""User-facing notifications emitted once per run outcome."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Default notifier: routes toasts to the ``pdf_tool_pipeline.notifications`` logger."""

    def __init__(self, log: logging.Logger = logger) -> None:
        self._log = log

    def success(self, message: str) -> None:
        self._log.info(message)

    def info(self, message: str) -> None:
        self._log.info(message)

    def error(self, message: str) -> None:
        self._log.error(message)
