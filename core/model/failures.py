# pocketinfer/core/model/failures.py
import time
import logging
from typing import List, Optional, Set

from core.database.base import DatabaseService
from schemas.models import FailedModelEntry

logger = logging.getLogger(f"pocketinfer.{__name__}")

TABLE = "failed_models"


class FailureRegistry:
    """Persisted denylist of models that failed to load or failed their smoke test."""

    def __init__(self, db_service: DatabaseService):
        self.db = db_service

    def mark_failed(self, model_id: str, reason: Optional[str] = None) -> bool:
        ok = self.db.upsert(
            TABLE,
            {"model_id": model_id, "reason": reason, "failed_at": int(time.time() * 1000)},
            conflict_columns=("model_id",),
        )
        if ok:
            logger.warning(f"Model '{model_id}' marked as failed: {reason}")
        else:
            logger.error(f"Could not persist failure mark for model '{model_id}'.")
        return ok

    def clear_failed(self, model_id: str) -> bool:
        """Returns True if a failure mark was removed."""
        removed = self.db.delete(TABLE, {"model_id": model_id}) > 0
        if removed:
            logger.info(f"Cleared failure mark for model '{model_id}'.")
        return removed

    def is_failed(self, model_id: str) -> bool:
        return self.db.find_one(TABLE, {"model_id": model_id}) is not None

    def get_failed_ids(self) -> Set[str]:
        return {row["model_id"] for row in self.db.find(TABLE)}

    def list_failures(self) -> List[FailedModelEntry]:
        return [FailedModelEntry(**row) for row in self.db.find(TABLE, order_by="failed_at ASC")]
