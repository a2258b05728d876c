# pocketinfer/core/logging.py
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import get_config_manager

LOGGER_ROOT = "pocketinfer"


def setup_logging(config=None):
    """
    Configures the `pocketinfer` logger hierarchy from ConfigManager settings.
    Console output always, rotating file output when `logging.file.path` is set.
    """
    config = config or get_config_manager()
    log_level_str = str(config.get_config("server.log_level", "INFO")).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_format = config.get_config("logging.format", "%(levelname)s - %(asctime)s - %(name)s - %(module)s:%(lineno)d - %(message)s")
    date_format = config.get_config("logging.date_format", "%Y-%m-%d %H:%M:%S")
    formatter = logging.Formatter(log_format, datefmt=date_format)

    root_logger = logging.getLogger(LOGGER_ROOT)
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file_path_str = config.get_config("logging.file.path", "data/logs/pocketinfer.log")
    if log_file_path_str:
        log_file_path = Path(log_file_path_str)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=config.get_config("logging.file.max_bytes", 1024 * 1024 * 5),
            backupCount=config.get_config("logging.file.backup_count", 5),
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        root_logger.info(f"File logging configured at: {log_file_path}")

    logging.getLogger("uvicorn.error").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if log_level > logging.INFO else log_level)

    root_logger.info(f"Logging setup complete. Application log level set to {log_level_str}.")

# config/config.yaml logging section:
# logging:
#   format: "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s"
#   date_format: "%Y-%m-%d %H:%M:%S"
#   file:
#     path: "data/logs/pocketinfer.log" # null disables file logging
#     max_bytes: 5242880
#     backup_count: 5
