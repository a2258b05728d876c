# pocketinfer/api/internal/models.py
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from api.dependencies import get_model_mgr
from core.model.manager import ModelManager
from schemas.common import UnifiedAPIResponse
from schemas.models import DownloadProgress, ModelLoadingInfo, ModelTestResult, PersistenceSummary
from utils.errors import ErrorCode
from utils.exceptions import APIError, ModelServiceError

router = APIRouter()

logger = logging.getLogger(f"pocketinfer.{__name__}")


def _run_download(model_manager: ModelManager, model_id: str) -> None:
    try:
        result = model_manager.download_model(model_id)
        logger.info(f"Background download of {model_id} finished: {result.status.value} ({result.formatted_size})")
    except ModelServiceError as e:
        # The progress tracker and ledger already hold the failure for polling.
        logger.error(f"Background download of {model_id} failed:\n{e.describe()}")


@router.get(
    "/persistence",
    response_model=UnifiedAPIResponse[PersistenceSummary],
    response_model_exclude_none=True,
    summary="Persistence Ledger Summary",
)
def get_persistence_summary(model_manager: ModelManager = Depends(get_model_mgr)):
    return UnifiedAPIResponse(success=True, data=model_manager.get_persistence_summary())


@router.post(
    "/persistence/cleanup",
    response_model=UnifiedAPIResponse[Dict[str, int]],
    summary="Drop Ledger Entries And References Whose Files Are Gone",
)
def cleanup_deleted_models(model_manager: ModelManager = Depends(get_model_mgr)):
    result = model_manager.cleanup_deleted_models()
    logger.info(f"Persistence cleanup: {result}")
    return UnifiedAPIResponse(success=True, message="Cleanup completed.", data=result)


@router.get(
    "/loading",
    response_model=UnifiedAPIResponse[ModelLoadingInfo],
    response_model_exclude_none=True,
    summary="Current Model Loading Progress",
)
def get_loading_info(model_manager: ModelManager = Depends(get_model_mgr)):
    return UnifiedAPIResponse(success=True, data=model_manager.get_model_loading_info())


@router.post(
    "/unload",
    response_model=UnifiedAPIResponse[Dict[str, bool]],
    summary="Unload The Current Model",
)
def unload_current_model(model_manager: ModelManager = Depends(get_model_mgr)):
    unloaded = model_manager.unload_model()
    return UnifiedAPIResponse(
        success=True,
        message="Model unloaded." if unloaded else "No model was loaded.",
        data={"unloaded": unloaded},
    )


@router.post(
    "/{model_id}/download",
    response_model=UnifiedAPIResponse[DownloadProgress],
    response_model_exclude_none=True,
    summary="Start Downloading A Model",
)
def start_download(
    model_id: str,
    background_tasks: BackgroundTasks,
    model_manager: ModelManager = Depends(get_model_mgr),
):
    descriptor = model_manager.resolve_descriptor(model_id)
    if model_manager.downloader.progress.is_active(descriptor.id):
        return UnifiedAPIResponse(
            success=True,
            message="Download already in progress.",
            data=model_manager.get_download_progress(descriptor.id),
        )
    background_tasks.add_task(_run_download, model_manager, descriptor.id)
    logger.info(f"Scheduled download of {descriptor.id} from {descriptor.source_url}")
    return UnifiedAPIResponse(
        success=True,
        message="Download scheduled.",
        data=DownloadProgress(model_id=descriptor.id, state="SCHEDULED"),
    )


@router.get(
    "/{model_id}/download",
    response_model=UnifiedAPIResponse[DownloadProgress],
    response_model_exclude_none=True,
    summary="Download Progress Of A Model",
)
def get_download_progress(model_id: str, model_manager: ModelManager = Depends(get_model_mgr)):
    progress = model_manager.get_download_progress(model_id)
    if progress is None:
        raise APIError(error=ErrorCode.COMMON_NOT_FOUND,
                       override_message=f"No download has been started for '{model_id}'.")
    return UnifiedAPIResponse(success=True, data=progress)


@router.delete(
    "/{model_id}",
    response_model=UnifiedAPIResponse[Dict[str, bool]],
    summary="Remove A Downloaded Model",
)
def remove_model(model_id: str, model_manager: ModelManager = Depends(get_model_mgr)):
    removed = model_manager.remove_model(model_id)
    return UnifiedAPIResponse(
        success=True,
        message="Model removed." if removed else "Nothing to remove.",
        data={"removed": removed},
    )


@router.get(
    "/{model_id}/persistence",
    response_model=UnifiedAPIResponse[Dict[str, Any]],
    response_model_exclude_none=True,
    summary="Ledger Entry Of A Model",
)
def get_persistence_info(model_id: str, model_manager: ModelManager = Depends(get_model_mgr)):
    info: Optional[Dict[str, Any]] = model_manager.get_persistence_info(model_id)
    if info is None:
        raise APIError(error=ErrorCode.COMMON_NOT_FOUND,
                       override_message=f"No ledger entry for '{model_id}'.")
    return UnifiedAPIResponse(success=True, data=info)


@router.post(
    "/{model_id}/test",
    response_model=UnifiedAPIResponse[ModelTestResult],
    response_model_exclude_none=True,
    summary="Smoke Test A Model",
)
def test_model(model_id: str, model_manager: ModelManager = Depends(get_model_mgr)):
    result = model_manager.test_model(model_id)
    return UnifiedAPIResponse(
        success=result.success,
        message="Model test passed." if result.success else "Model test failed.",
        data=result,
    )


@router.delete(
    "/{model_id}/failure",
    response_model=UnifiedAPIResponse[Dict[str, bool]],
    summary="Clear The Failure Mark Of A Model",
)
def clear_failure(model_id: str, model_manager: ModelManager = Depends(get_model_mgr)):
    cleared = model_manager.clear_failed(model_id)
    return UnifiedAPIResponse(success=True, data={"cleared": cleared})


@router.get(
    "/{model_id}/diagnostics",
    response_model=UnifiedAPIResponse[Dict[str, Any]],
    summary="File, Ledger And Slot Diagnostics Of A Model",
)
def get_diagnostics(model_id: str, model_manager: ModelManager = Depends(get_model_mgr)):
    return UnifiedAPIResponse(success=True, data=model_manager.validate_model_setup(model_id))
