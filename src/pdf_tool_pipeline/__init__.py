"""
PDF Tool Pipeline - client-side upload/processing pipeline for PDF worker tools

This package drives one tool run against a remote PDF worker: it optionally
gzips the input files, uploads them as multipart form data with byte-level
progress, waits while the worker computes, downloads the artifact and saves it
locally. It provides:

- A single orchestrator with tool behaviour injected as configuration
- Smoothed upload speed and time-remaining estimates
- Weighted overall progress across phases, including a synthetic ramp
- Cancellation that silences every event of the aborted run
- A development stand-in for the worker service

Key Components:
    - pipeline: ProcessingPipeline state machine
    - transport: multipart upload with progress and cancellation
    - rate: sliding-window throughput and ETA estimation
    - compression: gzip pre-compression of file parts
    - retrieval: artifact download and local saving
    - tools: tool registry glue and field builders
    - configuration: defaults, environment overrides and settings
    - devserver: FastAPI worker stand-in for local runs

Usage:
    Run a tool against a worker:
        async with create_tool_pipeline("compress-pdf") as pipeline:
            result = await pipeline.start(["report.pdf"], {"mode": "simple", "preset": "recommended"})

    Serve the development worker with:
        uvicorn pdf_tool_pipeline.devserver:create_app --factory --reload --port 3001
"""

from .errors import (
    CompressionError,
    NetworkError,
    OperationCancelled,
    PipelineError,
    RemoteError,
    TransferTimeout,
    ValidationError,
)
from .models import PipelinePhase, PipelineResult, PipelineSnapshot, ResponseKind, ToolConfig, TransferStats
from .pipeline import ProcessingPipeline
from .tools import create_tool_pipeline

__all__ = [
    "CompressionError",
    "NetworkError",
    "OperationCancelled",
    "PipelineError",
    "PipelinePhase",
    "PipelineResult",
    "PipelineSnapshot",
    "ProcessingPipeline",
    "RemoteError",
    "ResponseKind",
    "ToolConfig",
    "TransferStats",
    "TransferTimeout",
    "ValidationError",
    "create_tool_pipeline",
]
