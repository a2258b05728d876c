# pocketinfer/core/engine/dummy.py

import os
import time
import logging
from typing import Any, Dict

from .base import BaseEngine
from schemas.engine import EngineInfo, GenerationInput

logger = logging.getLogger(f"pocketinfer.{__name__}")


class DummyEngine(BaseEngine):
    """
    Development engine: simulates load and generation latency and echoes the prompt.
    Reads the head of the model file on load so unreadable artifacts still fail.
    """
    ENGINE_NAME = "DummyEngine"

    def __init__(self):
        super().__init__()
        self._load_delay_sec: float = 0.0
        self._processing_delay_sec: float = 0.0

    def initialize(self, engine_config: Dict[str, Any]) -> bool:
        super_init_ok = super().initialize(engine_config)
        if not super_init_ok:
            logger.error("DummyEngine: Base class initialization failed.")
            return False
        self._load_delay_sec = float(self._engine_config.get("load_delay_ms", 0)) / 1000
        self._processing_delay_sec = float(self._engine_config.get("processing_delay_ms", 0)) / 1000
        return True

    def _load_native(self, model_path: str, options: Dict[str, Any]) -> Any:
        logger.info(f"DummyEngine: Simulating loading model from '{model_path}' with options: {options}")
        with open(model_path, "rb") as f:
            header = f.read(16)
        if self._load_delay_sec:
            time.sleep(self._load_delay_sec)
        return {
            "model_name": os.path.basename(model_path),
            "header": header,
            "thinking": bool(options.get("thinking")),
            "multimodal": bool(options.get("multimodal")),
        }

    def _generate(self, native: Any, inputs: GenerationInput, timeout_sec: float) -> str:
        if self._processing_delay_sec:
            time.sleep(min(self._processing_delay_sec, timeout_sec))
        answer = f"[{native['model_name']}] {inputs.prompt.strip()[:inputs.max_tokens * 4]}"
        if inputs.image_bytes is not None:
            answer += f" (image attached: {len(inputs.image_bytes)} bytes)"
        if native["thinking"]:
            return f"<think>Considering the request at temperature {inputs.temperature}.</think>{answer}"
        return answer

    def get_info(self) -> EngineInfo:
        info = super().get_info()
        info.additional_info = {
            "load_delay_ms": int(self._load_delay_sec * 1000),
            "processing_delay_ms": int(self._processing_delay_sec * 1000),
        }
        return info
