# pocketinfer/core/config.py

import yaml
import os
from typing import Any, Dict, Callable, List
import logging
logger = logging.getLogger(f"pocketinfer.{__name__}")


class ValidationResult:
    def __init__(self, valid: bool, errors: List[str] = None):
        self.valid = valid
        self.errors = errors or []

    def __bool__(self):
        return self.valid


DEFAULT_CONFIG: Dict[str, Any] = {
    "system": {"name": "PocketInfer", "version": "1.0.0"},
    "server": {"host": "0.0.0.0", "port": 8005, "workers": 1, "log_level": "info"},
    "engines": {"default": "dummy", "dummy": {"load_delay_ms": 200, "processing_delay_ms": 50}},
    "models": {
        "default_model": "GEMMA_3_1B_IT",
        "load_timeout_sec": 60,
        "inference_timeout_sec": 300,
        "inference_workers": 2,
        "revalidate_on_reuse": True,
    },
    "storage": {
        # Most persistent first, most reliably writable last
        "reference_dirs": [
            {"name": "shared-documents", "path": "~/Documents/local_ai_model_refs"},
            {"name": "app-data", "path": "data/local_ai_model_refs"},
            {"name": "app-cache", "path": "data/cache/local_ai_model_refs"},
        ],
        "shared_download_dir": "~/Downloads/local_ai_models",
        "app_download_dir": "data/downloaded_models",
        "scan_dirs": ["~/Downloads", "~/Downloads/local_ai_models", "~/Documents/Models", "data/models"],
        "scan_extensions": [".task"],
    },
    "download": {
        "connect_timeout_sec": 30,
        "read_timeout_sec": 300,
        "chunk_size": 8192,
        "lock_timeout_sec": 5,
        "auth_token": None,
    },
    "capture": {"provider": "none", "static_image_path": None},
    "database": {"type": "sqlite", "path": "data/db/pocketinfer.db"},
    "logging": {"file": {"path": "data/logs/pocketinfer.log", "max_bytes": 5242880, "backup_count": 5}},
}


class ConfigValidator:
    """
    Validate the configuration.
    Only structural checks: required sections and their types, plus the
    numeric timeouts the model subsystem relies on.
    """
    def __init__(self):
        self._schemas: Dict[str, Any] = {
            "server": dict,
            "models": dict,
            "storage": dict,
            "download": dict,
            "database": dict,
        }

    def validate(self, config: Dict) -> ValidationResult:
        errors = []
        if not isinstance(config, dict):
            return ValidationResult(False, [f"Configuration root must be a mapping, got {type(config)}"])

        for key, expected_type in self._schemas.items():
            if key not in config:
                errors.append(f"Configuration is missing the key: '{key}'")
            elif not isinstance(config[key], expected_type):
                errors.append(f"Configuration part '{key}' has the wrong type, expected {expected_type}, got {type(config[key])}")

        if isinstance(config.get("server"), dict) and "port" not in config["server"]:
            errors.append("Server configuration 'server' is missing 'port'")

        models = config.get("models")
        if isinstance(models, dict):
            for timeout_key in ("load_timeout_sec", "inference_timeout_sec"):
                value = models.get(timeout_key)
                if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                    errors.append(f"'models.{timeout_key}' must be a positive number, got {value!r}")

        storage = config.get("storage")
        if isinstance(storage, dict) and "reference_dirs" in storage:
            if not isinstance(storage["reference_dirs"], list) or not storage["reference_dirs"]:
                errors.append("'storage.reference_dirs' must be a non-empty list")

        if errors:
            return ValidationResult(False, errors)
        return ValidationResult(True)


class ConfigLoader:
    """Configuration loading interface."""
    def load(self) -> Dict:
        raise NotImplementedError

    def supports_reload(self) -> bool:
        return False

    def reload(self) -> Dict:
        raise NotImplementedError("Reloading not supported by this loader.")


class FileConfigLoader(ConfigLoader):
    """Load configuration from a YAML or JSON file."""
    def __init__(self, file_path: str, file_format: str = "yaml"):
        self._file_path = file_path
        self._format = file_format.lower()
        if not os.path.exists(self._file_path):
            raise FileNotFoundError(f"Configuration file not found: {self._file_path}")

    def load(self) -> Dict:
        try:
            with open(self._file_path, 'r', encoding='utf-8') as f:
                if self._format == "yaml":
                    return yaml.safe_load(f)
                elif self._format == "json":
                    import json
                    return json.load(f)
                else:
                    raise ValueError(f"Unsupported configuration file format: {self._format}")
        except Exception as e:
            logger.error(f"Failed to load configuration file '{self._file_path}': {e}")
            raise

    def supports_reload(self) -> bool:
        return True

    def reload(self) -> Dict:
        logger.info(f"Reloading configuration file: {self._file_path}")
        return self.load()


class DictConfigLoader(ConfigLoader):
    """Serves an in-memory mapping, used for embedding and tests."""
    def __init__(self, data: Dict):
        self._data = data

    def load(self) -> Dict:
        return self._data


class ConfigManager:
    """
    Central coordinator for configuration: loading, validation and dotted-path access.
    """
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, loader: ConfigLoader = None, validator: ConfigValidator = None):
        # Prevent duplicate initialization
        if hasattr(self, '_initialized') and self._initialized:
            return

        self._config_data: Dict = {}
        self._loader = loader
        self._validator = validator or ConfigValidator()
        self._listeners: Dict[str, List[Callable]] = {}
        self._initialized = False

        if self._loader:
            self.load_config()
            self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drops the singleton so the next get_config_manager() call reloads from scratch."""
        cls._instance = None

    def load_config(self) -> bool:
        if not self._loader:
            logger.error("Error: No configuration loader (ConfigLoader) provided.")
            return False
        try:
            new_config = self._loader.load()
            validation_result = self._validator.validate(new_config)
            if not validation_result:
                logger.error(f"Configuration validation failed: {validation_result.errors}")
                return False
            self._config_data = new_config
            logger.info("Configuration loaded and validated successfully.")
            return True
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            return False

    def get_config(self, path: str, default: Any = None) -> Any:
        """
        Get a configuration item by path, e.g. "models.load_timeout_sec".
        """
        if not self._config_data:
            logger.warning("Warning: Configuration data is empty. Possibly not loaded or loading failed.")
            return default

        value = self._config_data
        for key in path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set_config(self, path: str, value: Any) -> bool:
        """
        Set a configuration item in memory and notify listeners.
        The change is rolled back if the result no longer validates.
        """
        keys = path.split('.')
        data_ref = self._config_data
        try:
            for key in keys[:-1]:
                if key not in data_ref or not isinstance(data_ref[key], dict):
                    data_ref[key] = {}
                data_ref = data_ref[key]

            existed = keys[-1] in data_ref
            old_value = data_ref.get(keys[-1])
            data_ref[keys[-1]] = value

            validation_result = self._validator.validate(self._config_data)
            if not validation_result:
                logger.error(f"Configuration validation failed after setting '{path}': {validation_result.errors}")
                if existed:
                    data_ref[keys[-1]] = old_value
                else:
                    del data_ref[keys[-1]]
                return False

            logger.info(f"Configuration item '{path}' has been updated to: {value}")
            self._notify_listeners(path, value)
            return True
        except Exception as e:
            logger.error(f"Error setting configuration '{path}': {e}")
            return False

    def register_listener(self, path: str, callback: Callable):
        self._listeners.setdefault(path, []).append(callback)
        logger.info(f"Listener registered for path: {path}")

    def _notify_listeners(self, path: str, value: Any):
        for listener_path, callbacks in self._listeners.items():
            if path == listener_path or path.startswith(listener_path + "."):
                for callback in callbacks:
                    try:
                        callback(path, value)
                    except Exception as e:
                        logger.error(f"Error executing configuration listener callback (path: {path}): {e}")

    def reload_config_from_source(self) -> bool:
        if not self._loader or not self._loader.supports_reload():
            logger.warning("Warning: Current configuration loader does not support reloading.")
            return False

        try:
            logger.info("Attempting to reload configuration...")
            new_config = self._loader.reload()
            validation_result = self._validator.validate(new_config)
            if not validation_result:
                logger.error(f"Reloaded configuration validation failed: {validation_result.errors}")
                return False

            self._config_data = new_config
            logger.info("Configuration reloaded and validated successfully.")
            self._notify_listeners("", self._config_data)
            return True
        except Exception as e:
            logger.error(f"Error reloading configuration: {e}")
            return False


def get_config_manager(config_file_path: str = None) -> ConfigManager:
    """
    Get the singleton instance of ConfigManager.
    On first call the file at `config_file_path` (or POCKETINFER_CONFIG_PATH) is loaded,
    writing DEFAULT_CONFIG there first if the file does not exist.
    """
    if ConfigManager._instance is None or not ConfigManager._instance._initialized:
        if config_file_path is None:
            config_file_path = os.getenv("POCKETINFER_CONFIG_PATH", "config/config.yaml")
        if not os.path.exists(config_file_path):
            default_config_dir = os.path.dirname(config_file_path)
            if default_config_dir and not os.path.exists(default_config_dir):
                os.makedirs(default_config_dir, exist_ok=True)

            logger.warning(f"Warning: Configuration file '{config_file_path}' not found. Writing the default configuration.")
            try:
                with open(config_file_path, 'w', encoding='utf-8') as f_default:
                    yaml.safe_dump(DEFAULT_CONFIG, f_default, default_flow_style=False, sort_keys=False)
                logger.info(f"Default configuration file '{config_file_path}' has been created.")
            except OSError as e_create:
                logger.error(f"Failed to create default configuration file '{config_file_path}': {e_create}")
                raise RuntimeError(f"Failed to load or create configuration file: {config_file_path}") from e_create

        loader = FileConfigLoader(file_path=config_file_path)
        ConfigManager(loader=loader)

    return ConfigManager._instance
