import pytest

from core.database import DatabaseFactory, SQLiteDatabase, initialize_schema


def _row(model_id, size, status="COMPLETED"):
    return {"model_id": model_id, "display_name": model_id.title(), "file_name": f"{model_id}.task",
            "file_size": size, "download_status": status}


def test_factory_builds_sqlite_and_rejects_unknown_types(tmp_path):
    db = DatabaseFactory.create_database({"type": "SQLite", "path": str(tmp_path / "x.db")})
    assert isinstance(db, SQLiteDatabase)
    with pytest.raises(ValueError):
        DatabaseFactory.create_database({"type": "postgres"})


def test_schema_is_idempotent(db_service):
    assert initialize_schema(db_service)
    tables = {r["name"] for r in db_service.execute_query("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"model_ledger", "model_events", "ledger_meta", "failed_models"} <= tables


def test_crud_and_filter_suffixes(db_service):
    for model_id, size, status in [("a", 10, "COMPLETED"), ("b", 200, "FAILED"), ("c", 3000, "CORRUPTED")]:
        assert db_service.insert("model_ledger", _row(model_id, size, status)) is not None

    assert db_service.count("model_ledger") == 3
    assert db_service.count("model_ledger", {"file_size__gt": 100}) == 2
    assert db_service.count("model_ledger", {"download_status__in": ["FAILED", "CORRUPTED"]}) == 2
    assert db_service.count("model_ledger", {"download_status__ne": "COMPLETED"}) == 2
    assert db_service.count("model_ledger", {"status_message__isnull": True}) == 3

    rows = db_service.find("model_ledger", order_by="file_size DESC", limit=2)
    assert [r["model_id"] for r in rows] == ["c", "b"]
    assert [r["model_id"] for r in db_service.find("model_ledger", order_by="model_id", offset=2)] == ["c"]

    assert db_service.update("model_ledger", {"model_id": "a"}, {"is_loaded": True}) == 1
    assert db_service.find_one("model_ledger", {"model_id": "a"})["is_loaded"] == 1
    assert db_service.delete("model_ledger", {"file_size__lte": 200}) == 2
    assert db_service.find_one("model_ledger", {"model_id": "a"}) is None


def test_guards_against_unfiltered_writes(db_service):
    db_service.insert("model_ledger", _row("a", 1))
    assert db_service.update("model_ledger", {}, {"file_size": 5}) == 0
    assert db_service.delete("model_ledger", {}) == 0
    assert db_service.count("model_ledger") == 1


def test_upsert_updates_existing_rows(db_service):
    assert db_service.upsert("ledger_meta", {"key": "models_directory", "value": "/one"}, ["key"])
    assert db_service.upsert("ledger_meta", {"key": "models_directory", "value": "/two"}, ["key"])
    assert db_service.find("ledger_meta") == [{"key": "models_directory", "value": "/two"}]


def test_execute_query_only_runs_selects(db_service):
    assert db_service.execute_query("DELETE FROM model_ledger") == []


def test_writes_survive_reconnect(tmp_path):
    config = {"type": "sqlite", "path": str(tmp_path / "nested" / "ledger.db")}
    db = SQLiteDatabase(config)
    assert db.connect() and initialize_schema(db)
    db.insert("failed_models", {"model_id": "a", "reason": "crash", "failed_at": 1})
    db.disconnect()

    reopened = SQLiteDatabase(config)
    assert reopened.connect()
    try:
        assert reopened.find_one("failed_models", {"model_id": "a"})["reason"] == "crash"
    finally:
        reopened.disconnect()
