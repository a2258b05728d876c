# pocketinfer/api/openapi/inference.py
import logging

from fastapi import APIRouter, Body, Depends

from api.dependencies import get_model_mgr
from core.model.manager import ModelManager
from schemas.common import UnifiedAPIResponse
from schemas.request import GenerationRequest, GenerationResult

logger = logging.getLogger(f"pocketinfer.{__name__}")
router = APIRouter()


@router.post(
    "/text",
    response_model=UnifiedAPIResponse[GenerationResult],
    response_model_exclude_none=True,
    summary="Generate Text With The Selected Model",
)
def generate_text(
    request_data: GenerationRequest = Body(...),
    model_manager: ModelManager = Depends(get_model_mgr),
):
    """
    Runs one generation. The requested model is loaded on demand (replacing
    whichever model is loaded); an attached or captured image is passed to
    multimodal models and summarised into the prompt for the others.
    """
    logger.info(f"Generation request for model '{request_data.model_id or '<default>'}' "
                f"({len(request_data.prompt_text)} chars, image={'yes' if request_data.image_base64 else 'no'})")
    result = model_manager.generate(request_data)
    return UnifiedAPIResponse(success=True, message="Generation completed", data=result)
