"""
Throughput and time-remaining estimation for a single transfer.

Upload progress events arrive in bursts: several callbacks can fire within a
millisecond while the socket buffer drains, followed by a long quiet period.
Averaging raw event-to-event speeds would swing wildly, so the estimator only
admits an instantaneous sample once a minimum interval has elapsed since the
previous admitted one and reports the mean of a bounded window of samples.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

logger = logging.getLogger(__name__)

# Float tolerance for interval comparisons on timestamps such as ``i / 10``
_EPSILON = 1e-9


@dataclass(frozen=True)
class ProgressSample:
    bytes_transferred: int
    total_bytes: int
    timestamp: float


@dataclass(frozen=True)
class RateEstimate:
    bytes_per_second: float
    eta_seconds: Optional[float]


class RateEstimator:
    """
    Sliding-window mean of admitted instantaneous speeds.

    One estimator covers one transfer. Call :meth:`reset` (or create a new
    instance) before the next transfer so smoothing never carries over.

    Attributes:
        window_size: Maximum number of instantaneous speeds kept
        min_interval: Minimum seconds between admitted samples
    """

    def __init__(self, window_size: int = 10, min_interval: float = 0.1) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        if min_interval <= 0:
            raise ValueError("min_interval must be positive")
        self.window_size = window_size
        self.min_interval = min_interval
        self._speeds: Deque[float] = deque(maxlen=window_size)
        self._last_time: Optional[float] = None
        self._last_bytes = 0

    @property
    def is_window_full(self) -> bool:
        return len(self._speeds) == self.window_size

    def reset(self) -> None:
        self._speeds.clear()
        self._last_time = None
        self._last_bytes = 0

    def observe(self, sample: ProgressSample) -> RateEstimate:
        """
        Feed one progress sample and return the current estimate.

        The first sample only seeds the baseline; no speed can be derived
        from a zero-length interval, so it reports 0 B/s and no ETA.

        Args:
            sample: Cumulative bytes sent at a monotonic timestamp

        Returns:
            RateEstimate with the smoothed speed and the remaining-time estimate
        """
        if self._last_time is None:
            self._last_time = sample.timestamp
            self._last_bytes = sample.bytes_transferred
            return RateEstimate(bytes_per_second=0.0, eta_seconds=None)

        elapsed = sample.timestamp - self._last_time
        if elapsed + _EPSILON >= self.min_interval:
            delta = max(sample.bytes_transferred - self._last_bytes, 0)
            self._speeds.append(delta / elapsed)
            self._last_time = sample.timestamp
            self._last_bytes = sample.bytes_transferred

        return self.current(sample)

    def current(self, sample: ProgressSample) -> RateEstimate:
        if not self._speeds:
            return RateEstimate(bytes_per_second=0.0, eta_seconds=None)

        speed = sum(self._speeds) / len(self._speeds)
        if speed <= 0:
            return RateEstimate(bytes_per_second=0.0, eta_seconds=None)

        remaining = max(sample.total_bytes - sample.bytes_transferred, 0)
        return RateEstimate(bytes_per_second=speed, eta_seconds=remaining / speed)
