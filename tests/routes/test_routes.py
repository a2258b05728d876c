import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.handlers import register_exception_handlers
from api.internal.models import router as internal_models_router
from api.internal.system import router as internal_system_router
from api.openapi.inference import router as inference_router
from api.openapi.models import router as models_router
from monitoring.collector import SystemMonitor


@pytest.fixture
def client(model_manager, db_service, fake_engine, config_manager):
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(internal_system_router, prefix="/api/v1/internal/system")
    app.include_router(internal_models_router, prefix="/api/v1/internal/models")
    app.include_router(models_router, prefix="/api/v1/models")
    app.include_router(inference_router, prefix="/api/v1/ai")
    app.state.model_manager = model_manager
    app.state.system_monitor = SystemMonitor(db_service, fake_engine, config_manager=config_manager)
    with TestClient(app) as test_client:
        yield test_client


def test_list_models_is_empty_until_installed(client, install_model, m1):
    body = client.get("/api/v1/models").json()
    assert body["success"] and body["data"] == []

    install_model(m1)
    body = client.get("/api/v1/models").json()
    assert [m["id"] for m in body["data"]] == [m1.id]
    assert "download_path" not in body["data"][0]


def test_supported_models_and_status(client, catalog, install_model, m1):
    install_model(m1)
    supported = client.get("/api/v1/models/supported").json()["data"]
    assert len(supported) == len(catalog)
    assert {m["id"]: m["is_available"] for m in supported}[m1.id]

    status = client.get("/api/v1/models/status").json()["data"]
    assert status["enabled"] and status["downloaded_count"] == 1
    assert status["slot_state"] == "EMPTY"


def test_generate_text(client, install_model, m1):
    install_model(m1)
    response = client.post("/api/v1/ai/text", json={"text": "Hi there", "model_id": m1.id})
    assert response.status_code == 200
    body = response.json()
    assert body["success"]
    assert body["data"]["response_text"] == "echo: Hi there"
    assert body["data"]["metadata"]["model_id"] == m1.id
    assert "thinking" not in body["data"]

    status = client.get("/api/v1/models/status").json()["data"]
    assert status["current_model_id"] == m1.id


def test_generate_unknown_model_returns_error_envelope(client):
    response = client.post("/api/v1/ai/text", json={"prompt_text": "hi", "model_id": "NOPE"})
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "MODEL_NOT_FOUND"
    assert body["error_details"]["kind"] == "ModelNotFound"
    assert "ModelNotFound: Unknown model 'NOPE'" in body["message"]


def test_generate_missing_model_is_a_conflict(client, m2):
    response = client.post("/api/v1/ai/text", json={"prompt_text": "hi", "model_id": m2.id})
    assert response.status_code == 409
    assert response.json()["error_code"] == "MODEL_UNAVAILABLE"


def test_generate_validation_error(client):
    response = client.post("/api/v1/ai/text", json={"prompt_text": "", "temperature": 5})
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "COMMON_VALIDATION_ERROR"
    fields = {e["field"] for e in body["error_details"]["errors"]}
    assert {"prompt_text", "temperature"} <= fields


def test_generate_bad_image_is_input_error(client, install_model, m1):
    install_model(m1)
    response = client.post("/api/v1/ai/text", json={"prompt_text": "hi", "image_base64": "%%%"})
    assert response.status_code == 400
    assert response.json()["error_code"] == "INFERENCE_INPUT_ERROR"


def test_download_schedule_then_poll(client, fake_session, m1):
    assert client.get(f"/api/v1/internal/models/{m1.id}/download").status_code == 404

    scheduled = client.post(f"/api/v1/internal/models/{m1.id}/download").json()
    assert scheduled["data"]["state"] == "SCHEDULED"

    # TestClient runs background tasks before returning the response.
    progress = client.get(f"/api/v1/internal/models/{m1.id}/download").json()["data"]
    assert progress["state"] == "COMPLETED" and progress["percent"] == 100
    assert len(fake_session.calls) == 1

    info = client.get(f"/api/v1/internal/models/{m1.id}/persistence").json()["data"]
    assert info["download_status"] == "COMPLETED"


def test_failed_background_download_is_visible_in_progress(client, fake_session, m1):
    fake_session.error = ConnectionError("offline")
    assert client.post(f"/api/v1/internal/models/{m1.id}/download").status_code == 200
    progress = client.get(f"/api/v1/internal/models/{m1.id}/download").json()["data"]
    assert progress["state"] == "FAILED"
    assert "offline" in progress["error"]


def test_persistence_routes(client, m1, m2):
    assert client.get(f"/api/v1/internal/models/{m2.id}/persistence").status_code == 404
    client.post(f"/api/v1/internal/models/{m1.id}/download")

    summary = client.get("/api/v1/internal/models/persistence").json()["data"]
    assert summary["statistics"]["total_models"] == 1

    cleanup = client.post("/api/v1/internal/models/persistence/cleanup").json()["data"]
    assert cleanup == {"ledger_entries_removed": 0, "stale_references_removed": 0}


def test_smoke_test_and_failure_mark(client, install_model, fake_engine, m1):
    install_model(m1)
    fake_engine.load_error = RuntimeError("corrupt")
    body = client.post(f"/api/v1/internal/models/{m1.id}/test").json()
    assert body["success"] is False
    assert client.get("/api/v1/models").json()["data"] == []

    fake_engine.load_error = None
    assert client.delete(f"/api/v1/internal/models/{m1.id}/failure").json()["data"] == {"cleared": True}
    body = client.post(f"/api/v1/internal/models/{m1.id}/test").json()
    assert body["success"] and body["data"]["response_text"]


def test_unload_and_remove(client, install_model, m1):
    install_model(m1)
    client.post("/api/v1/ai/text", json={"prompt_text": "hi"})
    assert client.post("/api/v1/internal/models/unload").json()["data"] == {"unloaded": True}
    assert client.post("/api/v1/internal/models/unload").json()["data"] == {"unloaded": False}

    assert client.delete(f"/api/v1/internal/models/{m1.id}").json()["data"] == {"removed": True}
    assert client.get("/api/v1/models").json()["data"] == []


def test_loading_and_diagnostics(client, m1):
    loading = client.get("/api/v1/internal/models/loading").json()["data"]
    assert loading["is_loading"] is False

    diagnostics = client.get(f"/api/v1/internal/models/{m1.id}/diagnostics").json()["data"]
    assert diagnostics["model_id"] == m1.id
    assert diagnostics["is_available"] is False
    assert len(diagnostics["references"]) == 3


def test_system_routes(client):
    status = client.get("/api/v1/internal/system/status").json()["data"]
    assert "cpu_usage" in status["metrics"]
    assert [s["name"] for s in status["storage"]] == ["documents", "app-data", "cache"]
    assert status["service"]["total_count"] > 0

    info = client.get("/api/v1/internal/system/info").json()["data"]
    assert info["software_name"] == "PocketInfer"
    assert info["models_stats"]["tracked_count"] == 0


def test_missing_service_is_reported_as_unavailable():
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(models_router, prefix="/api/v1/models")
    with TestClient(app) as test_client:
        response = test_client.get("/api/v1/models/status")
    assert response.status_code == 503
    assert response.json()["error_code"] == "COMMON_SERVICE_UNAVAILABLE"
