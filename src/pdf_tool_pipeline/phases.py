"""
Phase bookkeeping for the processing pipeline.

This module provides:
- The allowed transitions of the pipeline state machine
- Mapping of phase-local progress onto the overall 0-100 scale
- Display names and operation messages consumed by tool pages
- The synthetic ramp that keeps progress moving while the worker computes
"""

from __future__ import annotations

import math
from typing import Dict, FrozenSet, Tuple

from .models import PipelinePhase, ProgressWeights

ACTIVE_PHASES: FrozenSet[PipelinePhase] = frozenset(
    {
        PipelinePhase.PREPARING,
        PipelinePhase.UPLOADING,
        PipelinePhase.REMOTE_PROCESSING,
        PipelinePhase.RETRIEVING,
    }
)

TERMINAL_PHASES: FrozenSet[PipelinePhase] = frozenset(
    {PipelinePhase.COMPLETE, PipelinePhase.ERROR, PipelinePhase.CANCELLED}
)

TRANSITIONS: Dict[PipelinePhase, FrozenSet[PipelinePhase]] = {
    PipelinePhase.IDLE: frozenset({PipelinePhase.PREPARING, PipelinePhase.ERROR}),
    PipelinePhase.PREPARING: frozenset({PipelinePhase.UPLOADING}),
    PipelinePhase.UPLOADING: frozenset({PipelinePhase.REMOTE_PROCESSING, PipelinePhase.COMPLETE}),
    PipelinePhase.REMOTE_PROCESSING: frozenset({PipelinePhase.RETRIEVING}),
    PipelinePhase.RETRIEVING: frozenset({PipelinePhase.COMPLETE}),
    PipelinePhase.COMPLETE: frozenset({PipelinePhase.IDLE}),
    PipelinePhase.ERROR: frozenset({PipelinePhase.IDLE}),
    PipelinePhase.CANCELLED: frozenset({PipelinePhase.IDLE}),
}

_DISPLAY_PHASES: Dict[PipelinePhase, str] = {
    PipelinePhase.IDLE: "idle",
    PipelinePhase.PREPARING: "compressing",
    PipelinePhase.UPLOADING: "uploading",
    PipelinePhase.REMOTE_PROCESSING: "processing",
    PipelinePhase.RETRIEVING: "processing",
    PipelinePhase.COMPLETE: "ready",
    PipelinePhase.ERROR: "error",
    PipelinePhase.CANCELLED: "cancelled",
}


def is_active(phase: PipelinePhase) -> bool:
    return phase in ACTIVE_PHASES


def is_terminal(phase: PipelinePhase) -> bool:
    return phase in TERMINAL_PHASES


def can_transition(current: PipelinePhase, target: PipelinePhase) -> bool:
    if target in (PipelinePhase.ERROR, PipelinePhase.CANCELLED):
        return not is_terminal(current)
    return target in TRANSITIONS[current]


def to_display_phase(phase: PipelinePhase) -> str:
    return _DISPLAY_PHASES.get(phase, "idle")


def operation_message(phase: PipelinePhase, operation_name: str) -> str:
    if phase is PipelinePhase.PREPARING:
        return "Preparing files..."
    if phase is PipelinePhase.UPLOADING:
        return "Uploading files..."
    if phase is PipelinePhase.REMOTE_PROCESSING:
        return operation_name
    if phase is PipelinePhase.RETRIEVING:
        return "Downloading result..."
    if phase is PipelinePhase.COMPLETE:
        return "Completed!"
    if phase is PipelinePhase.ERROR:
        return "Processing failed"
    if phase is PipelinePhase.CANCELLED:
        return "Cancelled"
    return ""


def phase_range(phase: PipelinePhase, weights: ProgressWeights) -> Tuple[float, float]:
    """
    Return the ``(start, end)`` slice of the 0-100 scale owned by ``phase``.

    Args:
        phase: Pipeline phase
        weights: Per-phase shares summing to 100

    Returns:
        Tuple of overall progress bounds; terminal and idle phases collapse to a point
    """
    preparing_end = weights.preparing
    uploading_end = preparing_end + weights.uploading
    processing_end = uploading_end + weights.processing

    if phase is PipelinePhase.PREPARING:
        return 0.0, preparing_end
    if phase is PipelinePhase.UPLOADING:
        return preparing_end, uploading_end
    if phase is PipelinePhase.REMOTE_PROCESSING:
        return uploading_end, processing_end
    if phase is PipelinePhase.RETRIEVING:
        return processing_end, 100.0
    if phase is PipelinePhase.COMPLETE:
        return 100.0, 100.0
    return 0.0, 0.0


def weighted_progress(phase: PipelinePhase, fraction: float, weights: ProgressWeights) -> float:
    start, end = phase_range(phase, weights)
    fraction = min(max(fraction, 0.0), 1.0)
    return start + (end - start) * fraction


class SyntheticRamp:
    """
    Bounded asymptotic progress for phases without a real progress signal.

    ``fraction(t) = ceiling * (1 - exp(-t / tau))`` with ``tau`` a third of the
    estimated duration, so the ramp covers about 95% of its ceiling by the time
    the estimate elapses and never reaches 1.0 on its own. The caller snaps the
    phase to its upper bound when the real work finishes.

    Attributes:
        estimated_duration: Expected duration of the opaque phase in seconds
        ceiling: Upper bound of the ramp, strictly below 1.0
    """

    def __init__(self, estimated_duration: float, ceiling: float = 0.95) -> None:
        if not 0 < ceiling < 1:
            raise ValueError("ceiling must be between 0 and 1 (exclusive)")
        self.estimated_duration = max(estimated_duration, 1e-3)
        self.ceiling = ceiling

    def fraction(self, elapsed: float) -> float:
        if elapsed <= 0:
            return 0.0
        tau = self.estimated_duration / 3
        return self.ceiling * (1 - math.exp(-elapsed / tau))
