# pocketinfer/core/database/__init__.py
from typing import Dict, Any
from .base import DatabaseService
from .sqlite import SQLiteDatabase
from .schema import initialize_schema, TABLE_DEFINITIONS


class DatabaseFactory:
    """
    Creates the database service named by the `database` config section.
    """

    @staticmethod
    def create_database(config: Dict[str, Any]) -> DatabaseService:
        """
        Args:
            config: Database configuration dictionary, e.g. {"type": "sqlite", "path": "data/db/pocketinfer.db"}.
        Raises:
            ValueError: If the specified database type is not supported.
        """
        db_type = config.get("type", "sqlite").lower()

        if db_type == "sqlite":
            return SQLiteDatabase(config)
        else:
            raise ValueError(f"Unsupported database type: {db_type}")


__all__ = [
    "DatabaseService",
    "SQLiteDatabase",
    "DatabaseFactory",
    "initialize_schema",
    "TABLE_DEFINITIONS",
]
