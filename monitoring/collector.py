#! /usr/bin/env python3

import sys
import logging
import platform
from datetime import datetime
from typing import Dict, Any, List, Optional

import psutil

from core.config import ConfigManager, get_config_manager
from core.database.base import DatabaseService
from core.engine.base import IEngine
from schemas.common import SystemInfo, SystemMetrics
from schemas.models import DownloadStatusEnum

logger = logging.getLogger(f"pocketinfer.{__name__}")


class SystemMonitor:
    """
    Collects host metrics (CPU, memory) and model ledger statistics for the
    internal system endpoints.
    """

    def __init__(self, db_service: Optional[DatabaseService] = None, engine: Optional[IEngine] = None,
                 config_manager: Optional[ConfigManager] = None):
        self.db_service = db_service
        self.engine = engine
        self.config_manager = config_manager

    def collect_cpu_metrics(self) -> Dict[str, Any]:
        """Collect CPU usage metrics"""
        try:
            cpu_freq_info = psutil.cpu_freq()
            return {
                "cpu_percent": psutil.cpu_percent(interval=0.1),
                "cpu_count_logical": psutil.cpu_count(logical=True),
                "cpu_count_physical": psutil.cpu_count(logical=False),
                "cpu_freq_current": cpu_freq_info.current if cpu_freq_info else None,
                "load_avg_1m_5m_15m": psutil.getloadavg() if hasattr(psutil, 'getloadavg') else None
            }
        except (OSError, RuntimeError) as e:
            logger.error(f"Error collecting CPU metrics: {e}", exc_info=True)
            return {"error": str(e)}

    def collect_memory_metrics(self) -> Dict[str, Any]:
        """Collect memory usage metrics"""
        try:
            memory = psutil.virtual_memory()
            swap = psutil.swap_memory()
            return {
                "virtual_total_gb": round(memory.total / (1024**3), 2),
                "virtual_available_gb": round(memory.available / (1024**3), 2),
                "virtual_available_bytes": memory.available,
                "virtual_used_gb": round(memory.used / (1024**3), 2),
                "virtual_memory_used": memory.percent,
                "swap_total_gb": round(swap.total / (1024**3), 2),
                "swap_used_gb": round(swap.used / (1024**3), 2),
                "swap_memory_used": swap.percent,
            }
        except (OSError, RuntimeError) as e:
            logger.error(f"Error collecting memory metrics: {e}", exc_info=True)
            return {"error": str(e)}

    def collect_model_status(self) -> Dict[str, Any]:
        """Collect ledger statistics from the database"""
        result = {
            "tracked_count": 0,
            "downloaded_count": 0,
            "loaded_count": 0,
            "failed_count": 0,
        }

        if not self.db_service:
            logger.warning("Database service not provided to SystemMonitor; cannot collect model status.")
            result["status"] = "db_service_not_available"
            return result

        if not getattr(self.db_service, 'conn', None):
            logger.warning("Database service is not connected; cannot collect model status.")
            result["status"] = "db_not_connected"
            return result

        result["tracked_count"] = self.db_service.count("model_ledger")
        result["downloaded_count"] = self.db_service.count(
            "model_ledger", {"download_status": DownloadStatusEnum.COMPLETED.value})
        result["loaded_count"] = self.db_service.count("model_ledger", {"is_loaded": True})
        result["failed_count"] = self.db_service.count("failed_models")
        return result

    def collect_view_metrics(self) -> SystemMetrics:
        """Compact CPU/memory snapshot for the status endpoint."""
        cpu = self.collect_cpu_metrics()
        memory = self.collect_memory_metrics()
        return SystemMetrics(
            timestamp=datetime.now().isoformat(timespec="seconds"),
            cpu_usage=cpu.get("cpu_percent", 0.0),
            mem_usage=memory.get("virtual_memory_used", 0.0),
            mem_available_bytes=memory.get("virtual_available_bytes", 0),
        )

    def collect_os_info(self) -> Dict[str, Any]:
        """Collect OS info"""
        return {
            "os_name": platform.system(),
            "os_version": platform.release(),
            "machine": platform.machine(),
            "python_version": platform.python_version(),
        }

    def collect_engine_info(self) -> List[Dict[str, Any]]:
        if self.engine is None:
            return []
        return [self.engine.get_info().model_dump()]

    def collect_system_info(self) -> SystemInfo:
        """Collect system info"""
        config_manager = self.config_manager or get_config_manager()
        system_config = config_manager.get_config("system", {"name": "PocketInfer", "version": "1.0.0"})

        system_info = SystemInfo(
            system_name=platform.node() or "unknown",
            os_info=self.collect_os_info(),
            software_name=system_config["name"],
            software_version=system_config["version"],
            models_stats=self.collect_model_status(),
            engine_info=self.collect_engine_info(),
        )
        logger.info(f"Collected system info: {system_info.model_dump()}")
        return system_info


if __name__ == "__main__":
    logging.basicConfig(stream=sys.stdout, level=logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    monitor_instance = SystemMonitor()
    logger.info(f"CPU: {monitor_instance.collect_cpu_metrics()}")
    logger.info(f"Memory: {monitor_instance.collect_memory_metrics()}")
