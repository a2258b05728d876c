# pocketinfer/core/engine/__init__.py
from .base import IEngine, BaseEngine, EngineHandle
from .dummy import DummyEngine
from .factory import EngineRegistry, engine_registry
from .service import ModelSlotManager, SlotState

__all__ = [
    "IEngine",
    "BaseEngine",
    "EngineHandle",
    "DummyEngine",
    "EngineRegistry",
    "engine_registry",
    "ModelSlotManager",
    "SlotState",
]
