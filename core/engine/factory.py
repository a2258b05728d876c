# pocketinfer/core/engine/factory.py
from typing import Dict, Type, Optional, List, Any

from .base import IEngine
from .dummy import DummyEngine
import logging

logger = logging.getLogger(f"pocketinfer.{__name__}")


class EngineRegistry:
    """
    Manages the registration and creation of inference engine instances.
    Implements a factory pattern for engines.
    """
    def __init__(self):
        self._engines: Dict[str, Type[IEngine]] = {}
        self._default_engine_name: Optional[str] = None

        # Auto-register known engines
        self.register_engine("dummy", DummyEngine)

    def register_engine(self, name: str, engine_class: Type[IEngine]) -> None:
        """
        Registers an engine class with a given name.
        Args:
            name (str): The unique name for the engine type (e.g., "dummy").
            engine_class (Type[IEngine]): The class of the engine to register.
        """
        if not issubclass(engine_class, IEngine):
            raise TypeError(f"Engine class {engine_class.__name__} must inherit from IEngine.")
        if name in self._engines:
            logger.warning(f"Warning: Engine with name '{name}' already registered. Overwriting.")
        self._engines[name] = engine_class
        logger.info(f"Engine '{name}' (class: {engine_class.__name__}) registered.")

    def get_engine_class(self, name: str) -> Optional[Type[IEngine]]:
        return self._engines.get(name)

    def get_all_engines(self) -> List[str]:
        return list(self._engines.keys())

    def set_default_engine(self, name: str):
        """Sets the default engine name."""
        if name in self._engines:
            self._default_engine_name = name
        else:
            raise ValueError(f"Engine '{name}' not registered. Cannot set as default.")

    def create_engine(self, name: Optional[str] = None, engine_config: Optional[Dict[str, Any]] = None) -> Optional[IEngine]:
        """
        Creates and initializes an instance of the specified (or default) engine.
        Returns:
            Optional[IEngine]: An instance of the engine, or None if creation fails.
        """
        engine_name_to_create = name or self._default_engine_name
        if not engine_name_to_create:
            raise ValueError("No engine name specified and no default engine set.")

        engine_class = self.get_engine_class(engine_name_to_create)
        if not engine_class:
            logger.error(f"Error: Engine class for '{engine_name_to_create}' not found.")
            return None

        try:
            engine_instance = engine_class()
            if not engine_instance.initialize(engine_config or {}):
                logger.error(f"Failed to initialize engine instance of '{engine_name_to_create}'.")
                return None
            logger.info(f"Engine instance '{engine_name_to_create}' created and initialized.")
            return engine_instance
        except Exception as e:
            logger.error(f"Error creating engine '{engine_name_to_create}': {e}", exc_info=True)
            return None


# Global instance of the registry
engine_registry = EngineRegistry()
engine_registry.set_default_engine("dummy")
