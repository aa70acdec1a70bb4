"""
Orchestration of one tool run: prepare, upload, wait, retrieve.

This module drives the pipeline state machine every tool page relies on:
- Optional gzip pre-compression of the input files (Preparing)
- Multipart upload with smoothed speed and ETA (Uploading)
- A synthetic progress ramp while the worker computes (RemoteProcessing)
- Download and local save of the artifact (Retrieving)
- Cancellation, reset and "download again"

The ProcessingPipeline class owns the current phase and result. Tool-specific
behaviour (endpoint, weights, form fields, naming) is injected as data through
:class:`~pdf_tool_pipeline.models.ToolConfig` and a field builder.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from .cancellation import CancellationToken
from .compression import (
    COMPRESSED_FIELD,
    GZIP_CONTENT_TYPE,
    GZIP_SUFFIX,
    CompressionOutcome,
    compress_bytes,
    should_compress,
    summarize,
)
from .configuration import load_settings
from .errors import CompressionError, OperationCancelled, PipelineError, RemoteError, ValidationError
from .models import (
    CompressionSummary,
    PipelinePhase,
    PipelineResult,
    PipelineSettings,
    PipelineSnapshot,
    ProgressWeights,
    ResponseKind,
    ToolConfig,
    TransferStats,
)
from .notifications import LoggingNotifier, Notifier
from .phases import (
    SyntheticRamp,
    can_transition,
    is_active,
    is_terminal,
    operation_message,
    phase_range,
    to_display_phase,
    weighted_progress,
)
from .rate import ProgressSample, RateEstimator
from .retrieval import Artifact, ArtifactDescriptor, ArtifactRetriever, ArtifactSink, LocalDirectorySink
from .transport import NamedPayload, TransferRequest, UploadTransport, build_timeout
from .utils import resolve_api_url, split_extension, with_extension

logger = logging.getLogger(__name__)

FieldBuilder = Callable[[Sequence[NamedPayload], Mapping[str, Any]], List[NamedPayload]]
Listener = Callable[[PipelineSnapshot], None]
FileInput = Union[NamedPayload, str, Path]

_DISPOSITION_PATTERN = re.compile(r"""filename\*?=(?:UTF-8'')?["']?([^"';]+)""", re.IGNORECASE)
_RESERVED_KEYS = ("fileId", "fileName")


def default_field_builder(files: Sequence[NamedPayload], options: Mapping[str, Any]) -> List[NamedPayload]:
    """Encode every option as a scalar form field, skipping ``None`` values."""
    return [NamedPayload.scalar(key, value) for key, value in options.items() if value is not None]


class ProcessingPipeline:
    """
    State machine driving one tool's upload/processing runs.

    A pipeline is bound to a single tool and runs at most one operation at a
    time. Calling :meth:`start` while a run is active is a programming error;
    callers must await or :meth:`cancel` the current run first.

    Attributes:
        tool: Tool configuration (endpoint, weights, naming)
        settings: Pipeline settings (transport, rate, compression, progress)
        auto_save: Whether finished artifacts are saved through the sink
    """

    def __init__(
        self,
        tool: ToolConfig,
        *,
        settings: Optional[PipelineSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        field_builder: Optional[FieldBuilder] = None,
        sink: Optional[ArtifactSink] = None,
        notifier: Optional[Notifier] = None,
        executor: Optional[Executor] = None,
        compress: Optional[bool] = None,
        auto_save: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            tool: Tool configuration, usually from the tool registry
            settings: Pipeline settings (default: loaded from config/defaults.yaml)
            client: Shared ``httpx.AsyncClient``; one is created and owned if omitted
            field_builder: Builds the tool's scalar form fields from options
            sink: Where finished artifacts are saved (default: download directory)
            notifier: Receives one success/info/error message per run outcome
            executor: Executor for gzip work (default: a private single thread)
            compress: Force pre-compression on or off for this pipeline
            auto_save: Override ``downloads.auto_save``
            clock: Monotonic clock used for progress timestamps
        """
        self.tool = tool
        self.settings = settings or load_settings()
        self.auto_save = self.settings.downloads.auto_save if auto_save is None else auto_save
        self._compress_override = compress
        self._field_builder = field_builder or default_field_builder
        self._sink = sink or LocalDirectorySink(self.settings.downloads.directory)
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock

        self._owns_client = client is None
        if client is None:
            transport_settings = self.settings.transport
            client = httpx.AsyncClient(
                timeout=build_timeout(
                    transport_settings.connect_timeout,
                    transport_settings.write_timeout,
                    transport_settings.read_timeout,
                )
            )
        self.client = client

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="gzip")

        self._transport = UploadTransport(client, chunk_size=self.settings.transport.chunk_size, clock=clock)
        self._retriever = ArtifactRetriever(
            client,
            api_base_url=self.settings.api.base_url,
            worker_url=self.settings.api.worker_url,
            download_path=self.settings.api.download_path,
            clock=clock,
        )

        self._phase = PipelinePhase.IDLE
        self._progress = 0.0
        self._stats: Optional[TransferStats] = None
        self._result: Optional[PipelineResult] = None
        self._error: Optional[str] = None
        self._last_artifact: Optional[Artifact] = None
        self._cancelled_from: Optional[PipelinePhase] = None
        self._token: Optional[CancellationToken] = None
        self._run_task: Optional[asyncio.Task] = None
        self._ramp_task: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def phase(self) -> PipelinePhase:
        return self._phase

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def stats(self) -> Optional[TransferStats]:
        return self._stats

    @property
    def result(self) -> Optional[PipelineResult]:
        return self._result

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_processing(self) -> bool:
        return is_active(self._phase)

    @property
    def weights(self) -> ProgressWeights:
        return self.tool.progress_weights or self.settings.progress.weights

    @property
    def transport(self) -> UploadTransport:
        return self._transport

    @property
    def snapshot(self) -> PipelineSnapshot:
        return PipelineSnapshot(
            phase=self._phase,
            display_phase=to_display_phase(self._phase),
            progress=self._progress,
            operation=operation_message(self._phase, self.tool.operation_name),
            stats=self._stats.model_copy() if self._stats else None,
            result=self._result,
            error=self._error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for every phase, progress and stats change.

        Args:
            listener: Called synchronously with an immutable snapshot;
                exceptions it raises are logged and otherwise ignored

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(
        self,
        files: Sequence[FileInput],
        options: Optional[Mapping[str, Any]] = None,
        output_file_name: Optional[str] = None,
    ) -> PipelineResult:
        """
        Run the tool on ``files`` and return the finished result.

        A pipeline left in Complete, Error or Cancelled is reset implicitly,
        discarding the previous result.

        Args:
            files: Input files as payloads or filesystem paths
            options: Tool options, turned into form fields by the field builder
            output_file_name: Desired name of the saved artifact

        Returns:
            PipelineResult of the completed run

        Raises:
            RuntimeError: If a run is already in progress
            ValidationError: If the inputs are invalid (no I/O has happened)
            OperationCancelled: If the run was cancelled
            NetworkError: On transport-level failure
            RemoteError: If the worker or the download endpoint failed
        """
        if is_active(self._phase) or self._run_task is not None:
            raise RuntimeError("A run is already in progress; await or cancel it before starting another")
        if is_terminal(self._phase):
            self.reset()

        token = CancellationToken()
        self._token = token
        self._cancelled_from = None
        options = dict(options or {})

        try:
            payloads = self._normalize_files(files)
            endpoint = self._endpoint_url(options)
        except ValidationError as exc:
            self._fail(token, exc)
            raise

        # The run is active from here on, before its task is first scheduled
        logger.info(f"{self.tool.tool_id}: starting run with {len(payloads)} file(s)")
        self._stats = TransferStats(
            total_bytes=sum(part.size for part in payloads),
            current_file_name=payloads[0].filename or "document.pdf",
            current_file_size=payloads[0].size,
            total_files=len(payloads),
        )
        self._transition(token, PipelinePhase.PREPARING)
        if token.is_cancelled():
            # A listener cancelled on the Preparing event
            raise self._cancelled_error()
        self._run_task = asyncio.ensure_future(self._run(token, payloads, options, endpoint, output_file_name))
        try:
            return await self._run_task
        except asyncio.CancelledError:
            if token.is_cancelled():
                raise self._cancelled_error() from None
            # The caller's own task was cancelled: tear the run down too.
            self.cancel()
            raise
        except Exception:
            # A cancelled run can still see the aborted request fail; cancellation wins.
            if token.is_cancelled():
                raise self._cancelled_error() from None
            raise
        finally:
            self._run_task = None

    def cancel(self) -> bool:
        """
        Cancel the active run.

        Aborts the in-flight upload or download, stops the synthetic ramp and
        moves to Cancelled. No further events are delivered for the run.

        Returns:
            True if a run was cancelled, False if there was nothing to cancel
        """
        token = self._token
        if token is None or not is_active(self._phase) or token.is_cancelled():
            return False

        self._cancelled_from = self._phase
        token.cancel()
        self._transport.cancel()
        self._stop_ramp()
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()

        logger.info(f"{self.tool.tool_id}: run cancelled during {self._cancelled_from.value}")
        self._phase = PipelinePhase.CANCELLED
        self._publish()
        self._notifier.info("Operation cancelled")
        return True

    def reset(self) -> None:
        """Return to Idle, releasing the current result and the saved artifact bytes."""
        if is_active(self._phase):
            self.cancel()
        self._token = None
        self._result = None
        self._last_artifact = None
        self._stats = None
        self._error = None
        self._progress = 0.0
        self._phase = PipelinePhase.IDLE
        self._publish()

    async def download_again(self) -> Path:
        """
        Save the last artifact again without re-running the tool.

        Falls back to re-downloading by ``fileId`` when the bytes are no
        longer held in memory.

        Returns:
            Path of the newly saved copy

        Raises:
            RuntimeError: If no run has produced an artifact yet
        """
        artifact = self._last_artifact
        if artifact is None:
            if self._result is None or not self._result.file_id:
                raise RuntimeError("Nothing to download yet")
            artifact = await self._retriever.retrieve(ArtifactDescriptor(self._result.file_id, self._result.file_name))
            self._last_artifact = artifact

        path = self._sink.save(artifact.content, artifact.file_name)
        self._notifier.success("Download started")
        return path

    async def aclose(self) -> None:
        self.cancel()
        if self._owns_client:
            await self.client.aclose()
        if self._owns_executor and isinstance(self._executor, ThreadPoolExecutor):
            self._executor.shutdown(wait=False)

    async def __aenter__(self) -> "ProcessingPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Run internals
    # ------------------------------------------------------------------

    async def _run(
        self,
        token: CancellationToken,
        files: List[NamedPayload],
        options: Dict[str, Any],
        endpoint: str,
        output_file_name: Optional[str],
    ) -> PipelineResult:
        try:
            return await self._execute(token, files, options, endpoint, output_file_name)
        except OperationCancelled:
            if not token.is_cancelled():
                # The transport was cancelled directly rather than through cancel().
                self.cancel()
            raise
        except Exception as exc:
            self._fail(token, exc)
            raise
        finally:
            self._stop_ramp()

    async def _execute(
        self,
        token: CancellationToken,
        files: List[NamedPayload],
        options: Dict[str, Any],
        endpoint: str,
        output_file_name: Optional[str],
    ) -> PipelineResult:
        payloads = await self._prepare(token, files, options)
        self._check(token)

        self._transition(token, PipelinePhase.UPLOADING)
        request = TransferRequest(endpoint=endpoint, payloads=tuple(payloads), response_kind=self.tool.response_kind)
        estimator = RateEstimator(self.settings.rate.window_size, self.settings.rate.min_interval)
        response = await self._transport.send(request, on_progress=lambda sample: self._on_upload_progress(token, estimator, sample))
        self._check(token)

        if response.kind is ResponseKind.BINARY:
            server_name = self._filename_from_headers(response.headers)
            file_name = self._result_file_name(files, server_name, output_file_name)
            artifact = Artifact(file_name=file_name, content=response.content or b"", media_type=response.headers.get("content-type"))
            saved_path = self._save(artifact)
            result = PipelineResult(file_name=file_name, payload=artifact.content, saved_path=saved_path)
            return self._complete(token, result, artifact)

        data = response.data or {}
        file_id = data.get("fileId")
        if not file_id:
            raise RemoteError("No fileId returned from server", status_code=response.status_code)
        file_name = self._result_file_name(files, data.get("fileName"), output_file_name)

        self._transition(token, PipelinePhase.REMOTE_PROCESSING)
        await self._settle(token)
        self._check(token)

        self._transition(token, PipelinePhase.RETRIEVING)
        artifact = await self._retriever.retrieve(
            ArtifactDescriptor(file_id=str(file_id), file_name=file_name),
            on_progress=lambda sample: self._on_phase_progress(token, PipelinePhase.RETRIEVING, sample),
        )
        self._check(token)
        saved_path = self._save(artifact)

        result = PipelineResult(
            file_id=str(file_id),
            file_name=file_name,
            payload=artifact.content,
            server_metadata={key: value for key, value in data.items() if key not in _RESERVED_KEYS},
            saved_path=saved_path,
        )
        return self._complete(token, result, artifact)

    async def _prepare(self, token: CancellationToken, files: List[NamedPayload], options: Dict[str, Any]) -> List[NamedPayload]:
        fields = list(self._field_builder(files, options))
        use_gzip = self._compress_override
        if use_gzip is None:
            use_gzip = self.tool.use_gzip and self.settings.compression.enabled

        parts: List[NamedPayload] = list(files)
        if use_gzip:
            parts, outcomes = await self._compress_parts(token, files)
            if outcomes and self._stats is not None:
                summary = summarize(outcomes)
                self._stats.compression = CompressionSummary(
                    original_size=summary.original_size,
                    compressed_size=summary.compressed_size,
                    ratio_percent=summary.ratio_percent,
                )
            if outcomes:
                fields.append(NamedPayload.scalar(COMPRESSED_FIELD, True))

        self._update(token, progress=weighted_progress(PipelinePhase.PREPARING, 1.0, self.weights))
        return parts + fields

    async def _compress_parts(
        self, token: CancellationToken, files: List[NamedPayload]
    ) -> Tuple[List[NamedPayload], List[CompressionOutcome]]:
        """
        Gzip every eligible file part on the executor.

        Any compression failure sends the whole request uncompressed and
        untagged rather than failing the run.

        Args:
            token: Token of the current run
            files: Raw file parts in request order

        Returns:
            Tuple of (parts to send, outcomes of the parts that were gzipped)
        """
        compression = self.settings.compression
        loop = asyncio.get_running_loop()
        total = sum(part.size for part in files) or 1
        done = 0
        parts: List[NamedPayload] = []
        outcomes: List[CompressionOutcome] = []

        for part in files:
            self._check(token)
            filename = part.filename or part.name
            if should_compress(filename, part.size, min_size=compression.min_size, skip_suffixes=compression.skip_suffixes):
                try:
                    compressed = await loop.run_in_executor(self._executor, compress_bytes, part.content or b"", compression.level)
                except CompressionError as exc:
                    logger.warning(f"{self.tool.tool_id}: {exc.message}; sending files uncompressed")
                    return list(files), []
                parts.append(NamedPayload.file(part.name, compressed.content, f"{filename}{GZIP_SUFFIX}", GZIP_CONTENT_TYPE))
                outcomes.append(compressed.outcome)
            else:
                parts.append(part)

            done += part.size
            self._update(token, progress=weighted_progress(PipelinePhase.PREPARING, done / total, self.weights))

        return parts, outcomes

    async def _settle(self, token: CancellationToken) -> None:
        delay = self.tool.settle_delay if self.tool.settle_delay is not None else self.settings.progress.settle_delay
        if delay > 0:
            ramp = SyntheticRamp(delay, self.settings.progress.ramp_ceiling)
            self._ramp_task = asyncio.ensure_future(self._drive_ramp(token, ramp))
            try:
                await asyncio.sleep(delay)
            finally:
                self._stop_ramp()
        _, upper = phase_range(PipelinePhase.REMOTE_PROCESSING, self.weights)
        self._update(token, progress=upper)

    async def _drive_ramp(self, token: CancellationToken, ramp: SyntheticRamp) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        tick = self.settings.progress.tick_interval
        while not self._is_stale(token):
            await asyncio.sleep(tick)
            fraction = ramp.fraction(loop.time() - started)
            self._update(token, progress=weighted_progress(PipelinePhase.REMOTE_PROCESSING, fraction, self.weights))

    def _stop_ramp(self) -> None:
        task = self._ramp_task
        self._ramp_task = None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # State updates
    # ------------------------------------------------------------------

    def _cancelled_error(self) -> OperationCancelled:
        phase = self._cancelled_from.value if self._cancelled_from else None
        return OperationCancelled(phase=phase)

    def _is_stale(self, token: CancellationToken) -> bool:
        return token is not self._token or token.is_cancelled()

    def _check(self, token: CancellationToken) -> None:
        if token.is_cancelled():
            raise OperationCancelled()

    def _transition(self, token: CancellationToken, phase: PipelinePhase) -> None:
        if self._is_stale(token):
            return
        if not can_transition(self._phase, phase):
            raise RuntimeError(f"Invalid pipeline transition {self._phase.value} -> {phase.value}")
        logger.info(f"{self.tool.tool_id}: {self._phase.value} -> {phase.value}")
        self._phase = phase
        start, _ = phase_range(phase, self.weights)
        self._progress = max(self._progress, start)
        self._publish()

    def _update(self, token: CancellationToken, progress: Optional[float] = None) -> None:
        if self._is_stale(token):
            return
        if progress is not None:
            self._progress = max(self._progress, min(progress, 100.0))
        self._publish()

    def _on_upload_progress(self, token: CancellationToken, estimator: RateEstimator, sample: ProgressSample) -> None:
        if self._is_stale(token):
            return
        estimate = estimator.observe(sample)
        if self._stats is not None:
            self._stats.bytes_uploaded = sample.bytes_transferred
            self._stats.total_bytes = sample.total_bytes
            self._stats.bytes_per_second = estimate.bytes_per_second
            self._stats.eta_seconds = estimate.eta_seconds
        fraction = sample.bytes_transferred / sample.total_bytes if sample.total_bytes else 1.0
        self._update(token, progress=weighted_progress(PipelinePhase.UPLOADING, fraction, self.weights))

    def _on_phase_progress(self, token: CancellationToken, phase: PipelinePhase, sample: ProgressSample) -> None:
        fraction = sample.bytes_transferred / sample.total_bytes if sample.total_bytes else 1.0
        self._update(token, progress=weighted_progress(phase, fraction, self.weights))

    def _complete(self, token: CancellationToken, result: PipelineResult, artifact: Artifact) -> PipelineResult:
        self._check(token)
        self._result = result
        self._last_artifact = artifact
        self._progress = 100.0
        self._transition(token, PipelinePhase.COMPLETE)
        self._notifier.success("Process completed!")
        return result

    def _fail(self, token: CancellationToken, exc: Exception) -> None:
        if self._is_stale(token):
            return
        message = exc.message if isinstance(exc, PipelineError) else str(exc) or exc.__class__.__name__
        if isinstance(exc, PipelineError) and exc.phase is None:
            exc.phase = self._phase.value
        logger.error(f"{self.tool.tool_id}: run failed during {self._phase.value}: {message}")
        self._stop_ramp()
        self._error = message
        self._phase = PipelinePhase.ERROR
        self._publish()
        self._notifier.error(message)

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                # Listener failures never alter the run
                logger.exception(f"{self.tool.tool_id}: listener failed on {snapshot.phase.value} snapshot")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _normalize_files(self, files: Sequence[FileInput]) -> List[NamedPayload]:
        if not files:
            raise ValidationError("At least one file is required")

        payloads: List[NamedPayload] = []
        for item in files:
            if isinstance(item, NamedPayload):
                payload = item
            else:
                path = Path(item)
                if not path.is_file():
                    raise ValidationError(f"File not found: {path}")
                payload = NamedPayload.from_path(path)
            if not payload.is_file:
                raise ValidationError(f"'{payload.name}' is not a file part")
            if payload.size == 0:
                raise ValidationError(f"File '{payload.filename or payload.name}' is empty")
            payloads.append(payload)

        if len(payloads) > 1 and not self.tool.multi_file:
            raise ValidationError(f"{self.tool.tool_id} accepts a single file")
        return payloads

    def _endpoint_url(self, options: Mapping[str, Any]) -> str:
        endpoint = self.tool.endpoint
        if "{" in endpoint:
            try:
                endpoint = endpoint.format(**options)
            except KeyError as exc:
                raise ValidationError(f"Missing option {exc} required by endpoint {self.tool.endpoint}") from exc
        return resolve_api_url(endpoint, self.settings.api.base_url, self.settings.api.worker_url)

    def _result_file_name(self, files: Sequence[NamedPayload], server_name: Optional[str], requested: Optional[str]) -> str:
        extension = split_extension(server_name)[1] if server_name else ""
        extension = extension or self.tool.result_extension
        if requested:
            return with_extension(requested, extension)
        if server_name:
            return server_name
        stem = split_extension(files[0].filename or "document")[0] or "document"
        return f"{stem}{self.tool.file_name_suffix}{extension}"

    @staticmethod
    def _filename_from_headers(headers: Mapping[str, str]) -> Optional[str]:
        disposition = headers.get("content-disposition")
        if not disposition:
            return None
        match = _DISPOSITION_PATTERN.search(disposition)
        return match.group(1).strip() if match else None

    def _save(self, artifact: Artifact) -> Optional[str]:
        if not self.auto_save:
            return None
        return str(self._sink.save(artifact.content, artifact.file_name))
