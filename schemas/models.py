# pocketinfer/schemas/models.py
import os
import time
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any

from schemas.common import SystemMetrics
from utils.formatting import format_bytes


class PreferredBackend(str, Enum):
    CPU = "CPU"
    GPU = "GPU"
    AUTO = "AUTO"


class DownloadStatusEnum(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CORRUPTED = "CORRUPTED"


class ModelDescriptor(BaseModel):
    """
    Immutable metadata identifying one model variant of the closed catalog.
    """
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    id: str = Field(..., description="Stable identifier of the model variant")
    display_name: str = Field(..., description="Human readable name")
    file_name: str = Field(..., description="Expected artifact file name")
    source_url: str = Field(..., description="Remote location of the artifact")
    requires_manual_auth: bool = Field(False, description="Artifact is gated behind a license acceptance")
    supports_multimodal_input: bool = Field(False, description="Engine accepts image input for this model")
    preferred_backend: PreferredBackend = Field(PreferredBackend.CPU, description="Inference backend to request from the engine")
    description: str = ""
    license_url: Optional[str] = None
    license_statement: Optional[str] = None
    thinking: bool = Field(False, description="Model emits <think> reasoning blocks")
    temperature: float = 0.8
    top_k: int = 40
    top_p: float = 0.95
    max_tokens: int = 1024

    @property
    def reference_name(self) -> str:
        """Name of the indirection record pointing at this model's artifact."""
        return f"{self.file_name}.ref"


class PersistedModelInfo(BaseModel):
    """
    Ledger entry for one model. Timestamps are epoch milliseconds.
    """
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    model_id: str
    display_name: str
    file_name: str
    download_path: str = ""
    file_size: int = 0
    download_timestamp: int = 0
    last_accessed_timestamp: int = 0
    is_loaded: bool = False
    load_timestamp: int = 0
    download_status: DownloadStatusEnum = DownloadStatusEnum.NOT_STARTED
    status_message: Optional[str] = None
    checksum: Optional[str] = None

    @property
    def formatted_size(self) -> str:
        gb = self.file_size / (1024 ** 3)
        mb = self.file_size / (1024 ** 2)
        kb = self.file_size / 1024
        if gb >= 1:
            return f"{gb:.2f} GB"
        if mb >= 1:
            return f"{mb:.1f} MB"
        if kb >= 1:
            return f"{kb:.1f} KB"
        return f"{self.file_size} bytes"

    @property
    def age_in_days(self) -> int:
        if not self.download_timestamp:
            return 0
        return int((time.time() * 1000 - self.download_timestamp) // (24 * 60 * 60 * 1000))

    @property
    def is_file_available(self) -> bool:
        return bool(self.download_path) and os.path.isfile(self.download_path)

    def to_public_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data.update(
            formatted_size=self.formatted_size,
            age_in_days=self.age_in_days,
            is_file_available=self.is_file_available,
        )
        return data


class ModelStatistics(BaseModel):
    total_models: int = 0
    downloaded_models: int = 0
    loaded_models: int = 0
    total_size: int = 0
    formatted_total_size: str = "0 B"
    oldest_download: Optional[int] = None
    newest_download: Optional[int] = None
    last_accessed: Optional[int] = None


class ModelPublicView(BaseModel):
    """
    A catalog entry as shown to API clients.
    Omits the local artifact path.
    """
    model_config = ConfigDict(protected_namespaces=())

    id: str
    display_name: str
    description: str = ""
    file_name: str
    supports_multimodal_input: bool = False
    requires_manual_auth: bool = False
    thinking: bool = False
    preferred_backend: PreferredBackend = PreferredBackend.CPU
    license_url: Optional[str] = None

    @classmethod
    def from_descriptor(cls, descriptor: ModelDescriptor) -> "ModelPublicView":
        return cls(
            id=descriptor.id,
            display_name=descriptor.display_name,
            description=descriptor.description,
            file_name=descriptor.file_name,
            supports_multimodal_input=descriptor.supports_multimodal_input,
            requires_manual_auth=descriptor.requires_manual_auth,
            thinking=descriptor.thinking,
            preferred_backend=descriptor.preferred_backend,
            license_url=descriptor.license_url,
        )


class SupportedModelView(ModelPublicView):
    """Catalog entry enriched with its local state."""
    source_url: str
    is_available: bool = False
    is_loaded: bool = False
    is_failed: bool = False
    file_path: Optional[str] = None
    file_size: Optional[int] = None


class CurrentModelDetails(BaseModel):
    id: str
    display_name: str
    thinking: bool = False
    supports_multimodal_input: bool = False
    preferred_backend: PreferredBackend = PreferredBackend.CPU
    loaded_at: Optional[int] = None


class AIServiceStatus(BaseModel):
    """
    Status reported to the dispatch layer.
    """
    enabled: bool
    downloaded_count: int
    total_count: int
    current_model_id: Optional[str] = None
    is_processing: bool = False
    is_model_loading: bool = False
    processing_started_at: Optional[int] = None
    loading_started_at: Optional[int] = None
    slot_state: str = "EMPTY"
    current_model: Optional[CurrentModelDetails] = None
    supported_features: List[str] = Field(default_factory=list)


class ModelLoadingInfo(BaseModel):
    is_loading: bool
    elapsed_ms: int = 0
    timeout_ms: int = 0
    progress_percentage: float = 0.0
    model_name: Optional[str] = None


class ModelTestResult(BaseModel):
    success: bool
    model_id: str
    response_text: Optional[str] = None
    processing_time_ms: Optional[float] = None
    error_message: Optional[str] = None


class DownloadResultStatus(str, Enum):
    ALREADY_EXISTS = "ALREADY_EXISTS"
    DOWNLOADED = "DOWNLOADED"


class ModelDownloadResult(BaseModel):
    success: bool
    status: DownloadResultStatus
    model_id: str
    path: str
    size_bytes: int
    formatted_size: str
    message: Optional[str] = None


class DownloadProgress(BaseModel):
    model_id: str
    bytes_done: int = 0
    bytes_total: int = 0
    percent: int = 0
    state: str = "IDLE"
    error: Optional[str] = None
    updated_at: Optional[int] = None


class ModelFileInfo(BaseModel):
    name: str
    path: str
    size_bytes: int
    formatted_size: str

    @classmethod
    def for_path(cls, name: str, path: str, size_bytes: int) -> "ModelFileInfo":
        return cls(name=name, path=path, size_bytes=size_bytes, formatted_size=format_bytes(size_bytes))


class FailedModelEntry(BaseModel):
    model_id: str
    reason: Optional[str] = None
    failed_at: int


class LedgerEvent(BaseModel):
    model_id: str
    event: str
    detail: Optional[str] = None
    timestamp: int


class PersistenceSummary(BaseModel):
    statistics: ModelStatistics
    models: List[Dict[str, Any]] = Field(default_factory=list)
    models_directory: Optional[str] = None
    last_loaded_model: Optional[str] = None
    failed_models: List[FailedModelEntry] = Field(default_factory=list)


class SystemStatus(BaseModel):
    service: AIServiceStatus
    metrics: SystemMetrics
    storage: List[Dict[str, Any]] = Field(default_factory=list)
