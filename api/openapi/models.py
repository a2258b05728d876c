# pocketinfer/api/openapi/models.py
import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_model_mgr
from core.model.manager import ModelManager
from schemas.common import UnifiedAPIResponse
from schemas.models import AIServiceStatus, ModelPublicView, SupportedModelView

logger = logging.getLogger(f"pocketinfer.{__name__}")
router = APIRouter()


@router.get(
    "",
    response_model=UnifiedAPIResponse[List[ModelPublicView]],
    response_model_exclude_none=True,
    summary="List Models Available On This Device",
)
def list_available_models(
    include_failed: bool = Query(False, description="Also list models marked as failed"),
    model_manager: ModelManager = Depends(get_model_mgr),
):
    descriptors = model_manager.list_descriptors(include_failed=include_failed)
    logger.info(f"Listing {len(descriptors)} available models (include_failed={include_failed}).")
    return UnifiedAPIResponse(
        success=True,
        message="Models listed successfully" if descriptors else "No models are available on this device.",
        data=[ModelPublicView.from_descriptor(d) for d in descriptors],
    )


@router.get(
    "/supported",
    response_model=UnifiedAPIResponse[List[SupportedModelView]],
    response_model_exclude_none=True,
    summary="List Every Supported Model",
)
def list_supported_models(model_manager: ModelManager = Depends(get_model_mgr)):
    return UnifiedAPIResponse(
        success=True,
        message="Supported models listed successfully",
        data=model_manager.list_supported_models(),
    )


@router.get(
    "/status",
    response_model=UnifiedAPIResponse[AIServiceStatus],
    response_model_exclude_none=True,
    summary="Model Service Status",
)
def get_service_status(model_manager: ModelManager = Depends(get_model_mgr)):
    return UnifiedAPIResponse(success=True, data=model_manager.get_status())
