# scripts/init_db.py
import os
import sys
import logging

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.config import get_config_manager
from core.database import DatabaseFactory, initialize_schema

logger = logging.getLogger(f"pocketinfer.{__name__}")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(name)s - %(message)s")
    config = get_config_manager()
    db_config = config.get_config("database", {"type": "sqlite", "path": "data/db/pocketinfer.db"})

    db_service = DatabaseFactory.create_database(db_config)
    if not db_service.connect():
        logger.error(f"Could not connect to database at {db_config.get('path')}.")
        return 1
    try:
        if not initialize_schema(db_service):
            return 1
        logger.info(f"Database initialized at {db_config.get('path')}.")
        return 0
    finally:
        db_service.disconnect()


if __name__ == "__main__":
    sys.exit(main())
