# pocketinfer/schemas/__init__.py
from .common import PaginationInfo, UnifiedAPIResponse
from .models import (
    PreferredBackend,
    DownloadStatusEnum,
    ModelDescriptor,
    PersistedModelInfo,
    ModelStatistics,
    ModelPublicView,
    AIServiceStatus,
    ModelDownloadResult,
)
from .request import GenerationRequest, GenerationResult, CapturePreference, ImageScaling
from .engine import EngineInfo, GenerationInput

__all__ = [
    "PaginationInfo",
    "UnifiedAPIResponse",
    "PreferredBackend",
    "DownloadStatusEnum",
    "ModelDescriptor",
    "PersistedModelInfo",
    "ModelStatistics",
    "ModelPublicView",
    "AIServiceStatus",
    "ModelDownloadResult",
    "GenerationRequest",
    "GenerationResult",
    "CapturePreference",
    "ImageScaling",
    "EngineInfo",
    "GenerationInput",
]
