# pocketinfer/api/internal/system.py
import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_model_mgr, get_system_monitor
from core.model.manager import ModelManager
from monitoring.collector import SystemMonitor
from schemas.common import SystemInfo, UnifiedAPIResponse
from schemas.models import SystemStatus

router = APIRouter()

logger = logging.getLogger(f"pocketinfer.{__name__}")


@router.get(
        "/status",
        response_model=UnifiedAPIResponse[SystemStatus],
        response_model_exclude_none=True,
        summary="System Status"
)
def get_system_status(
    model_manager: ModelManager = Depends(get_model_mgr),
    collector: SystemMonitor = Depends(get_system_monitor),
):
    """
    Model service flags, a CPU/memory snapshot and the reference directories.
    """
    status = SystemStatus(
        service=model_manager.get_status(),
        metrics=collector.collect_view_metrics(),
        storage=model_manager.locator.describe_backends(),
    )
    return UnifiedAPIResponse(success=True, message="System status collected.", data=status)


@router.get(
        "/info",
        response_model=UnifiedAPIResponse[SystemInfo],
        response_model_exclude_none=True,
        summary="System Info"
)
def get_system_info(collector: SystemMonitor = Depends(get_system_monitor)):
    info = collector.collect_system_info()
    return UnifiedAPIResponse(
        success=True,
        message="System info collected successfully.",
        data=info
    )
