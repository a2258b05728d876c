# pocketinfer/core/database/schema.py
import logging
from typing import Dict

from .base import DatabaseService

logger = logging.getLogger(f"pocketinfer.{__name__}")

TABLE_DEFINITIONS: Dict[str, str] = {
    "model_ledger": """
    CREATE TABLE IF NOT EXISTS model_ledger (
        model_id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        file_name TEXT NOT NULL,
        download_path TEXT NOT NULL DEFAULT '',
        file_size INTEGER NOT NULL DEFAULT 0,
        download_timestamp INTEGER NOT NULL DEFAULT 0,
        last_accessed_timestamp INTEGER NOT NULL DEFAULT 0,
        is_loaded BOOLEAN NOT NULL DEFAULT 0,
        load_timestamp INTEGER NOT NULL DEFAULT 0,
        download_status TEXT NOT NULL DEFAULT 'NOT_STARTED',
        status_message TEXT,
        checksum TEXT
    );
    """,
    "model_events": """
    CREATE TABLE IF NOT EXISTS model_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        model_id TEXT NOT NULL,
        event TEXT NOT NULL,
        detail TEXT,
        timestamp INTEGER NOT NULL
    );
    """,
    "ledger_meta": """
    CREATE TABLE IF NOT EXISTS ledger_meta (
        key TEXT PRIMARY KEY,
        value TEXT
    );
    """,
    "failed_models": """
    CREATE TABLE IF NOT EXISTS failed_models (
        model_id TEXT PRIMARY KEY,
        reason TEXT,
        failed_at INTEGER NOT NULL
    );
    """,
}

INDEX_DEFINITIONS = [
    "CREATE INDEX IF NOT EXISTS idx_model_events_model_id ON model_events (model_id);",
    "CREATE INDEX IF NOT EXISTS idx_model_ledger_status ON model_ledger (download_status);",
]


def initialize_schema(db_service: DatabaseService) -> bool:
    """Creates every table and index used by the model subsystem. Safe to run repeatedly."""
    script = "\n".join(TABLE_DEFINITIONS.values()) + "\n" + "\n".join(INDEX_DEFINITIONS)
    ok = db_service.execute_script(script)
    if ok:
        logger.info(f"Database schema ready ({', '.join(TABLE_DEFINITIONS)}).")
    else:
        logger.error("Failed to initialize database schema.")
    return ok
