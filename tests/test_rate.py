"""
Tests for throughput and ETA estimation.

Tests cover:
- Baseline seeding and burst suppression
- Sliding-window smoothing
- ETA convergence on a constant-rate stream
- Reset between transfers
"""

import pytest

from pdf_tool_pipeline.rate import ProgressSample, RateEstimator


def constant_stream(step_bytes=1000, interval=0.1, total=100_000):
    """Yield samples for a transfer at a steady 10,000 B/s."""
    count = total // step_bytes
    for i in range(count + 1):
        yield ProgressSample(bytes_transferred=i * step_bytes, total_bytes=total, timestamp=i * interval)


class TestRateEstimator:
    """Tests for RateEstimator."""

    def test_first_sample_only_seeds_baseline(self):
        """The first sample has no interval to measure, so speed is zero and ETA unknown."""
        estimator = RateEstimator()
        estimate = estimator.observe(ProgressSample(5000, 10000, 1.0))
        assert estimate.bytes_per_second == 0
        assert estimate.eta_seconds is None

    def test_burst_samples_are_not_admitted(self):
        """Samples closer than the minimum interval do not change the window."""
        estimator = RateEstimator(min_interval=0.1)
        estimator.observe(ProgressSample(0, 10000, 0.0))
        estimator.observe(ProgressSample(1000, 10000, 0.1))
        burst = estimator.observe(ProgressSample(9000, 10000, 0.101))
        assert burst.bytes_per_second == pytest.approx(10_000)

    def test_eta_converges_on_constant_rate(self):
        """Once the window is full, the ETA is within 10% of the true remaining time."""
        estimator = RateEstimator(window_size=10, min_interval=0.1)
        for sample in constant_stream():
            estimate = estimator.observe(sample)
            if estimator.is_window_full and sample.bytes_transferred < sample.total_bytes:
                true_remaining = (sample.total_bytes - sample.bytes_transferred) / 10_000
                assert estimate.eta_seconds == pytest.approx(true_remaining, rel=0.1)
        assert estimator.is_window_full

    def test_window_is_bounded(self):
        """Only the most recent speeds contribute to the mean."""
        estimator = RateEstimator(window_size=2, min_interval=0.1)
        estimator.observe(ProgressSample(0, 100_000, 0.0))
        estimator.observe(ProgressSample(100, 100_000, 0.1))  # 1,000 B/s
        estimator.observe(ProgressSample(1100, 100_000, 0.2))  # 10,000 B/s
        estimate = estimator.observe(ProgressSample(2100, 100_000, 0.3))  # 10,000 B/s
        assert estimate.bytes_per_second == pytest.approx(10_000)

    def test_speeds_are_never_negative(self):
        """A sample reporting fewer bytes than before is clamped to zero speed."""
        estimator = RateEstimator()
        estimator.observe(ProgressSample(0, 1000, 0.0))
        estimator.observe(ProgressSample(500, 1000, 0.1))
        estimate = estimator.observe(ProgressSample(200, 1000, 0.2))
        assert estimate.bytes_per_second >= 0

    def test_zero_speed_has_no_eta(self):
        """A stalled transfer reports no ETA rather than infinity."""
        estimator = RateEstimator()
        estimator.observe(ProgressSample(100, 1000, 0.0))
        estimate = estimator.observe(ProgressSample(100, 1000, 0.5))
        assert estimate.bytes_per_second == 0
        assert estimate.eta_seconds is None

    def test_reset_discards_history(self):
        """After reset, the next sample seeds a new baseline."""
        estimator = RateEstimator()
        estimator.observe(ProgressSample(0, 1000, 0.0))
        estimator.observe(ProgressSample(500, 1000, 0.1))
        estimator.reset()
        estimate = estimator.observe(ProgressSample(0, 2000, 5.0))
        assert estimate.bytes_per_second == 0
        assert not estimator.is_window_full

    def test_invalid_parameters_rejected(self):
        """Window size and interval must be positive."""
        with pytest.raises(ValueError):
            RateEstimator(window_size=0)
        with pytest.raises(ValueError):
            RateEstimator(min_interval=0)
