# api/dependencies.py
from fastapi import Request

from core.database.base import DatabaseService
from core.config import ConfigManager
from core.model.manager import ModelManager
from monitoring.collector import SystemMonitor
from utils.errors import ErrorCode
from utils.exceptions import APIError


def get_db_service(request: Request) -> DatabaseService:
    if not hasattr(request.app.state, 'db'):
        raise APIError(error=ErrorCode.COMMON_SERVICE_UNAVAILABLE, override_message="Database service not available.")
    return request.app.state.db


def get_config(request: Request) -> ConfigManager:
    if not hasattr(request.app.state, 'config'):
        raise APIError(error=ErrorCode.COMMON_SERVICE_UNAVAILABLE, override_message="Configuration service not available.")
    return request.app.state.config


def get_model_mgr(request: Request) -> ModelManager:
    if not hasattr(request.app.state, 'model_manager'):
        raise APIError(error=ErrorCode.COMMON_SERVICE_UNAVAILABLE, override_message="Model manager not available.")
    return request.app.state.model_manager


def get_system_monitor(request: Request) -> SystemMonitor:
    if not hasattr(request.app.state, 'system_monitor'):
        raise APIError(error=ErrorCode.COMMON_SERVICE_UNAVAILABLE, override_message="System monitor not available.")
    return request.app.state.system_monitor
