# main.py
import os
import logging
import threading

from filelock import FileLock, Timeout
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Core and services
from core.config import get_config_manager
from core.logging import setup_logging
from core.database import DatabaseFactory
from core.database.schema import initialize_schema
from core.model.manager import build_model_manager

from monitoring.collector import SystemMonitor
from api.handlers import register_exception_handlers
# API Routers
from api.internal.system import router as internal_system_router
from api.internal.models import router as internal_models_router
from api.openapi.models import router as openapi_models_router
from api.openapi.inference import router as openapi_inference_router


# --- Global State / App Context  ---
logger = logging.getLogger(f"pocketinfer.{__name__}")

STARTUP_SCAN_LOCK = "data/model_system_init.lock"


# --- FastAPI Application Instance ---
config_manager = get_config_manager()
system_config = config_manager.get_config("system", {"name": "PocketInfer", "version": "1.0.0"})

app = FastAPI(
    title=system_config["name"],
    description="On-device model resource manager and text generation service.",
    version=system_config["version"]
)


# --- Application Startup Event ---
@app.on_event("startup")
async def startup_event():
    # 1. Configuration
    config_manager = get_config_manager()
    app.state.config = config_manager

    # 2. Logging
    setup_logging(config_manager)
    logger.info("Logging initialized.")

    # 3. Database service
    db_config = config_manager.get_config("database", {"type": "sqlite", "path": "data/db/pocketinfer.db"})
    db_service = DatabaseFactory.create_database(db_config)

    if not db_service.connect():
        logger.critical("Failed to connect to the database. Application cannot start.")
        raise RuntimeError("Database connection failed")
    initialize_schema(db_service)
    logger.info("Database service connected.")
    app.state.db = db_service

    # 4. Model subsystem
    model_manager = build_model_manager(config_manager, db_service)
    app.state.model_manager = model_manager
    logger.info("ModelManager initialized.")

    # 5. System monitor
    app.state.system_monitor = SystemMonitor(db_service=db_service, engine=model_manager.slot.engine,
                                             config_manager=config_manager)

    # 6. Reference migration and artifact scan, once per host at a time
    os.makedirs(os.path.dirname(STARTUP_SCAN_LOCK), exist_ok=True)
    app.state.init_lock = FileLock(STARTUP_SCAN_LOCK, timeout=1)

    def initialize_with_lock():
        try:
            with app.state.init_lock.acquire(timeout=1):
                model_manager.initialize_model_system()
        except Timeout:
            logger.info("Another process is already initializing the model system.")
        except Exception as e:
            logger.error(f"Error initializing model system: {e}", exc_info=True)

    threading.Thread(target=initialize_with_lock, name="model_system_init", daemon=True).start()


# --- Application Shutdown Event ---
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown...")
    model_manager = getattr(app.state, "model_manager", None)
    if model_manager:
        model_manager.shutdown()
        logger.info("Model slot released.")

    db_service = getattr(app.state, "db", None)
    if db_service:
        db_service.disconnect()
        logger.info("Database service disconnected.")

    logger.info("Application shutdown complete.")


# --- Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- API Routers ---
app.include_router(internal_system_router, prefix="/api/v1/internal/system", tags=["Internal - System"])
app.include_router(internal_models_router, prefix="/api/v1/internal/models", tags=["Internal - Models"])

app.include_router(openapi_models_router, prefix="/api/v1/models", tags=["OpenAPI - Models"])
app.include_router(openapi_inference_router, prefix="/api/v1/ai", tags=["OpenAPI - Generation"])


# --- Root Endpoint ---
@app.get("/", tags=["Root"])
async def read_root():
    return {"message": f"Welcome to PocketInfer API (Version {app.version})"}

# Run with: uvicorn main:app --reload
