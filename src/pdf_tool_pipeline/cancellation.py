"""Cooperative cancellation token shared by a pipeline run and its transport.

A run checks its token at every point where it would publish an event or start
new work. Compression runs on executor threads, so the token is thread-safe even
though everything else lives on a single event loop.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    Examples:
        >>> token = CancellationToken()
        >>> token.cancel()
        True
        >>> token.cancel()
        False
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> bool:
        """Request cancellation.

        Returns:
            True if this call flipped the token, False if it was already cancelled.
        """
        with self._lock:
            if self._is_cancelled.is_set():
                return False
            self._is_cancelled.set()
            return True

    def is_cancelled(self) -> bool:
        return self._is_cancelled.is_set()
