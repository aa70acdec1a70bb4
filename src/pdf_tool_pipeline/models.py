from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PipelinePhase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    UPLOADING = "uploading"
    REMOTE_PROCESSING = "remote_processing"
    RETRIEVING = "retrieving"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class ResponseKind(str, Enum):
    STRUCTURED = "structured"
    BINARY = "binary"


class ProgressWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    preparing: float = 5
    uploading: float = 35
    processing: float = 50
    retrieving: float = 10

    @model_validator(mode="after")
    def _check_total(self) -> "ProgressWeights":
        values = (self.preparing, self.uploading, self.processing, self.retrieving)
        if any(value < 0 for value in values):
            raise ValueError("progress weights must be non-negative")
        if abs(sum(values) - 100) > 1e-6:
            raise ValueError(f"progress weights must sum to 100, got {sum(values)}")
        return self


class ToolConfig(BaseModel):
    tool_id: str
    endpoint: str
    operation_name: str
    response_kind: ResponseKind = ResponseKind.STRUCTURED
    use_gzip: bool = True
    file_name_suffix: str = "-processed"
    result_extension: str = ".pdf"
    multi_file: bool = False
    progress_weights: Optional[ProgressWeights] = None
    settle_delay: Optional[float] = None


class CompressionSummary(BaseModel):
    original_size: int = 0
    compressed_size: int = 0
    ratio_percent: float = 0.0


class TransferStats(BaseModel):
    bytes_uploaded: int = 0
    total_bytes: int = 0
    bytes_per_second: float = 0.0
    eta_seconds: Optional[float] = None
    current_file_name: str = ""
    current_file_size: int = 0
    total_files: int = 0
    compression: Optional[CompressionSummary] = None


class PipelineResult(BaseModel):
    file_id: Optional[str] = None
    file_name: str
    payload: Optional[bytes] = Field(default=None, repr=False)
    server_metadata: Dict[str, Any] = Field(default_factory=dict)
    saved_path: Optional[str] = None


class PipelineSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    display_phase: str
    progress: float
    operation: str
    stats: Optional[TransferStats] = None
    result: Optional[PipelineResult] = None
    error: Optional[str] = None


class ApiSettings(BaseModel):
    base_url: str = "http://localhost:3000"
    worker_url: Optional[str] = None
    download_path: str = "/api/worker/download/{file_id}"


class TransportSettings(BaseModel):
    chunk_size: int = 64 * 1024
    connect_timeout: Optional[float] = 10.0
    write_timeout: Optional[float] = None
    read_timeout: Optional[float] = None


class RateSettings(BaseModel):
    window_size: int = 10
    min_interval: float = 0.1


class CompressionSettings(BaseModel):
    enabled: bool = True
    level: int = 6
    min_size: int = 0
    skip_suffixes: List[str] = Field(default_factory=list)


class ProgressSettings(BaseModel):
    weights: ProgressWeights = Field(default_factory=ProgressWeights)
    settle_delay: float = 0.5
    ramp_ceiling: float = 0.95
    tick_interval: float = 0.1


class DownloadSettings(BaseModel):
    directory: str = "downloads"
    auto_save: bool = True


class PipelineSettings(BaseModel):
    api: ApiSettings = Field(default_factory=ApiSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    rate: RateSettings = Field(default_factory=RateSettings)
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    downloads: DownloadSettings = Field(default_factory=DownloadSettings)
    tools: Dict[str, ToolConfig] = Field(default_factory=dict)
