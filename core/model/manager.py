# pocketinfer/core/model/manager.py
import os
import time
import logging
from typing import Any, Callable, Dict, List, Optional

import psutil
import requests

from core.capture import CaptureProvider, create_capture_provider
from core.config import ConfigManager
from core.database.base import DatabaseService
from core.engine.base import IEngine
from core.engine.factory import engine_registry
from core.engine.service import ModelSlotManager, SlotState
from core.model.catalog import DEFAULT_MODEL_ID, ModelCatalog, default_catalog
from core.model.downloader import DownloadProgressTracker, ModelDownloader
from core.model.failures import FailureRegistry
from core.model.ledger import PersistenceLedger
from core.model.locator import ResourceLocator
from core.model.status import ProcessingStatus
from core.model.storage import build_reference_backends
from schemas.engine import GenerationInput
from schemas.models import (
    AIServiceStatus,
    CurrentModelDetails,
    DownloadProgress,
    ModelDescriptor,
    ModelDownloadResult,
    ModelLoadingInfo,
    ModelTestResult,
    PersistenceSummary,
    SupportedModelView,
)
from schemas.request import CapturePreference, GenerationRequest, GenerationResult, ResponseMetadata
from utils.errors import ErrorKind
from utils.exceptions import CaptureError, ModelServiceError
from utils.formatting import estimate_tokens, format_response_text, split_thinking
from utils.imaging import decode_image_base64, describe_image, scale_image, to_data_url

logger = logging.getLogger(f"pocketinfer.{__name__}")

SMOKE_TEST_PROMPT = "Create a Python Hello World program"
SMOKE_TEST_SAMPLING = {"temperature": 0.7, "top_k": 40, "top_p": 0.95}


class ModelManager:
    """
    Central coordinator for the model subsystem, constructed once per process
    and injected into the HTTP layer. Discovery, download, generation and
    maintenance all go through here.
    """
    def __init__(self,
                 catalog: ModelCatalog,
                 locator: ResourceLocator,
                 ledger: PersistenceLedger,
                 failure_registry: FailureRegistry,
                 slot_manager: ModelSlotManager,
                 downloader: ModelDownloader,
                 capture_provider: CaptureProvider,
                 status: ProcessingStatus,
                 default_model_id: str = DEFAULT_MODEL_ID,
                 scan_dirs: Optional[List[str]] = None,
                 scan_extensions: Optional[List[str]] = None):
        self.catalog = catalog
        self.locator = locator
        self.ledger = ledger
        self.failures = failure_registry
        self.slot = slot_manager
        self.downloader = downloader
        self.capture = capture_provider
        self.status = status
        self.default_model_id = default_model_id
        self.scan_dirs = list(scan_dirs or [])
        self.scan_extensions = list(scan_extensions or [".task"])

    # --- lookup ---

    def resolve_descriptor(self, model_id: Optional[str]) -> ModelDescriptor:
        """Blank ids select the configured default; unknown ids raise ModelNotFound."""
        identifier = model_id if model_id and model_id.strip() else self.default_model_id
        descriptor = self.catalog.find_descriptor(identifier)
        if descriptor is None:
            raise ModelServiceError(
                ErrorKind.MODEL_NOT_FOUND,
                f"Unknown model '{identifier}'",
                context={"model_id": identifier, "known_models": ", ".join(d.id for d in self.catalog)},
            )
        return descriptor

    # --- discovery ---

    def list_descriptors(self, include_failed: bool = False) -> List[ModelDescriptor]:
        return self.locator.list_available(include_failed=include_failed)

    def list_supported_models(self) -> List[SupportedModelView]:
        failed = self.failures.get_failed_ids()
        current = self.slot.current_model_id
        views = []
        for descriptor in self.catalog:
            file_info = self.locator.get_model_file_info(descriptor)
            base = SupportedModelView.from_descriptor(descriptor).model_dump()
            views.append(SupportedModelView(
                **base,
                source_url=descriptor.source_url,
                is_available=file_info is not None,
                is_loaded=descriptor.id == current,
                is_failed=descriptor.id in failed,
                file_path=file_info.path if file_info else None,
                file_size=file_info.size_bytes if file_info else None,
            ))
        return views

    def get_status(self) -> AIServiceStatus:
        available = self.list_descriptors()
        flags = self.status.snapshot()
        slot = self.slot.snapshot()

        current_details = None
        descriptor = self.slot.current_descriptor
        if slot["state"] == SlotState.READY.value and descriptor is not None:
            current_details = CurrentModelDetails(
                id=descriptor.id,
                display_name=descriptor.display_name,
                thinking=descriptor.thinking,
                supports_multimodal_input=descriptor.supports_multimodal_input,
                preferred_backend=descriptor.preferred_backend,
                loaded_at=slot["loaded_at"],
            )

        features = ["text-generation"]
        if self.capture.available:
            features.append("camera-integration")
        if any(d.supports_multimodal_input for d in available):
            features.append("multimodal-input")
        if any(d.thinking for d in available):
            features.append("reasoning")

        return AIServiceStatus(
            enabled=bool(available),
            downloaded_count=len(available),
            total_count=len(self.catalog),
            current_model_id=current_details.id if current_details else None,
            is_processing=flags["is_processing"],
            is_model_loading=flags["is_model_loading"],
            processing_started_at=flags["processing_started_at"],
            loading_started_at=flags["loading_started_at"],
            slot_state=slot["state"],
            current_model=current_details,
            supported_features=features,
        )

    def get_model_loading_info(self) -> ModelLoadingInfo:
        return self.status.loading_info(self.slot.load_timeout_sec)

    # --- generation ---

    def _attach_image(self, request: GenerationRequest, warnings: Dict[str, Any]) -> Optional[bytes]:
        if request.image_base64:
            return decode_image_base64(request.image_base64)
        if request.capture is not None:
            try:
                return self.capture.capture(request.capture)
            except CaptureError as e:
                logger.warning(f"Capture for generation input failed: {e}")
                warnings["capture"] = str(e)
        return None

    def _capture_return_image(self, request: GenerationRequest, warnings: Dict[str, Any]) -> Optional[str]:
        try:
            frame = self.capture.capture(request.capture or CapturePreference())
            return to_data_url(scale_image(frame, request.image_scaling.max_dimension))
        except (CaptureError, ValueError) as e:
            logger.warning(f"Could not attach returned image: {e}")
            warnings["return_image"] = str(e)
            return None

    def generate(self, request: GenerationRequest) -> GenerationResult:
        descriptor = self.resolve_descriptor(request.model_id)
        warnings: Dict[str, Any] = {}

        image_bytes = self._attach_image(request, warnings)
        prompt = request.prompt_text
        engine_image = None
        if image_bytes is not None:
            if descriptor.supports_multimodal_input:
                engine_image = image_bytes
            else:
                summary = describe_image(image_bytes)
                prompt = (f"{request.prompt_text}\n\n[Image Context: {summary}]\n\n"
                          "Please respond considering both the text and image context.")

        inputs = GenerationInput(
            prompt=prompt,
            temperature=request.temperature if request.temperature is not None else descriptor.temperature,
            top_k=request.top_k if request.top_k is not None else descriptor.top_k,
            top_p=request.top_p if request.top_p is not None else descriptor.top_p,
            max_tokens=request.max_tokens if request.max_tokens is not None else descriptor.max_tokens,
            image_bytes=engine_image,
        )

        started = time.time()
        with self.slot.lease(descriptor) as handle:
            raw = self.slot.infer(descriptor, handle, inputs)
        inference_ms = (time.time() - started) * 1000
        self.ledger.record_accessed(descriptor)

        answer, thinking = split_thinking(raw) if descriptor.thinking else (raw, None)
        response_text = format_response_text(answer)

        image_out = self._capture_return_image(request, warnings) if request.return_image else None

        logger.info(f"Generated {len(response_text)} chars with {descriptor.id} in {inference_ms:.0f}ms")
        return GenerationResult(
            response_text=response_text,
            thinking=thinking,
            license=descriptor.license_statement,
            metadata=ResponseMetadata(
                model_id=descriptor.id,
                model_name=descriptor.display_name,
                inference_time_ms=round(inference_ms, 2),
                token_estimate=estimate_tokens(response_text),
                backend=descriptor.preferred_backend.value,
                multimodal=descriptor.supports_multimodal_input,
                image_attached=image_bytes is not None,
                thinking=thinking is not None,
            ),
            image_base64=image_out,
            warnings=warnings or None,
        )

    def test_model(self, model_id: str) -> ModelTestResult:
        """
        Loads the model and runs a fixed prompt. Success clears its failure mark;
        a load or inference failure sets it.
        """
        descriptor = self.resolve_descriptor(model_id)
        inputs = GenerationInput(prompt=SMOKE_TEST_PROMPT, max_tokens=descriptor.max_tokens, **SMOKE_TEST_SAMPLING)
        started = time.time()
        try:
            with self.slot.lease(descriptor) as handle:
                raw = self.slot.infer(descriptor, handle, inputs)
        except ModelServiceError as e:
            if e.kind != ErrorKind.MODEL_UNAVAILABLE and not e.context.get("engine_busy"):
                self.failures.mark_failed(descriptor.id, e.message)
            return ModelTestResult(success=False, model_id=descriptor.id, error_message=e.describe(),
                                   processing_time_ms=(time.time() - started) * 1000)

        elapsed_ms = (time.time() - started) * 1000
        if not raw or not raw.strip():
            self.failures.mark_failed(descriptor.id, "Smoke test returned an empty response")
            return ModelTestResult(success=False, model_id=descriptor.id, processing_time_ms=elapsed_ms,
                                   error_message="Model returned an empty response")

        self.failures.clear_failed(descriptor.id)
        logger.info(f"Smoke test passed for {descriptor.id} in {elapsed_ms:.0f}ms")
        return ModelTestResult(success=True, model_id=descriptor.id, response_text=format_response_text(raw),
                               processing_time_ms=elapsed_ms)

    # --- download & removal ---

    def download_model(self, model_id: str,
                       on_progress: Optional[Callable[[int, int, int], None]] = None) -> ModelDownloadResult:
        return self.downloader.download(self.resolve_descriptor(model_id), on_progress)

    def get_download_progress(self, model_id: str) -> Optional[DownloadProgress]:
        return self.downloader.progress.get(self.resolve_descriptor(model_id).id)

    def remove_model(self, model_id: str) -> bool:
        """
        Unloads the model if loaded, deletes its artifact, its ledger entry and
        every reference. Returns True if anything was removed. Raises
        StorageAccessDenied, keeping the entry and references, while a file
        cannot be deleted.
        """
        descriptor = self.resolve_descriptor(model_id)
        self.slot.unload(descriptor.id)

        paths = set()
        info = self.ledger.get_info(descriptor.id)
        if info and info.download_path:
            paths.add(info.download_path)
        resolved = self.locator.resolve(descriptor)
        if resolved:
            paths.add(resolved)

        removed_file = False
        undeleted = {}
        for path in paths:
            if not os.path.isfile(path):
                continue
            try:
                os.remove(path)
                removed_file = True
                logger.info(f"Deleted model file {path}")
            except OSError as e:
                logger.warning(f"Could not delete model file {path}: {e}")
                undeleted[path] = str(e)

        # Ledger entry and references stay while any artifact is still on disk.
        still_present = [path for path in paths if os.path.exists(path)]
        if still_present:
            raise ModelServiceError(
                ErrorKind.STORAGE_ACCESS_DENIED,
                f"Could not delete the model file of {descriptor.display_name}",
                context={"model_id": descriptor.id, "paths": still_present, "errors": undeleted},
            )

        removed_refs = self.locator.remove_reference(descriptor)
        removed_entry = self.ledger.remove(descriptor)
        self.failures.clear_failed(descriptor.id)
        return removed_file or removed_refs or removed_entry

    # --- failure marks ---

    def mark_failed(self, model_id: str, reason: Optional[str] = None) -> bool:
        return self.failures.mark_failed(self.resolve_descriptor(model_id).id, reason)

    def clear_failed(self, model_id: str) -> bool:
        return self.failures.clear_failed(self.resolve_descriptor(model_id).id)

    # --- persistence ---

    def get_persistence_summary(self) -> PersistenceSummary:
        return PersistenceSummary(
            statistics=self.ledger.get_statistics(),
            models=[info.to_public_dict() for info in self.ledger.get_all_info().values()],
            models_directory=self.ledger.get_models_directory(),
            last_loaded_model=self.ledger.get_last_loaded_model(),
            failed_models=self.failures.list_failures(),
        )

    def get_persistence_info(self, model_id: str) -> Optional[Dict[str, Any]]:
        info = self.ledger.get_info(self.resolve_descriptor(model_id).id)
        return info.to_public_dict() if info else None

    def cleanup_deleted_models(self) -> Dict[str, int]:
        return {
            "ledger_entries_removed": self.ledger.cleanup_deleted(),
            "stale_references_removed": self.locator.cleanup_stale_references(),
        }

    # --- diagnostics & lifecycle ---

    def validate_model_setup(self, model_id: str) -> Dict[str, Any]:
        descriptor = self.resolve_descriptor(model_id)
        result = self.locator.validate_model_setup(descriptor)
        info = self.ledger.get_info(descriptor.id)
        result["ledger"] = info.to_public_dict() if info else None
        result["slot"] = self.slot.snapshot()
        vm = psutil.virtual_memory()
        result["memory"] = {"available_bytes": vm.available, "total_bytes": vm.total, "percent_used": vm.percent}
        return result

    def initialize_model_system(self) -> Dict[str, Any]:
        """Startup pass: reconcile the ledger, migrate references, scan for artifacts."""
        started = time.time()
        reconciled = self.ledger.reconcile()
        migrated = self.locator.migrate_references()
        scanned = self.locator.scan_and_create_references(self.scan_dirs, self.scan_extensions)
        unknown = self.locator.find_unknown_references()
        summary = {
            "reconciled": reconciled,
            "migrated_references": migrated,
            "created_references": scanned,
            "unknown_references": len(unknown),
            "available_models": [d.id for d in self.list_descriptors()],
            "elapsed_ms": int((time.time() - started) * 1000),
        }
        logger.info(f"Model system initialized: {summary}")
        return summary

    def unload_model(self) -> bool:
        return self.slot.unload()

    def shutdown(self) -> None:
        self.slot.shutdown()


def build_model_manager(config_manager: ConfigManager,
                        db_service: DatabaseService,
                        engine: Optional[IEngine] = None,
                        catalog: Optional[ModelCatalog] = None,
                        capture_provider: Optional[CaptureProvider] = None,
                        session: Optional[requests.Session] = None) -> ModelManager:
    """Wires the model subsystem from configuration."""
    cfg = config_manager.get_config
    catalog = catalog or default_catalog

    failures = FailureRegistry(db_service)
    ledger = PersistenceLedger(db_service)
    backends = build_reference_backends(cfg("storage.reference_dirs", []))
    locator = ResourceLocator(backends, catalog, failures)

    if engine is None:
        engine_name = cfg("engines.default", "dummy")
        engine = engine_registry.create_engine(engine_name, cfg(f"engines.{engine_name}", {}) or {})
        if engine is None:
            raise RuntimeError(f"Could not create inference engine '{engine_name}'")

    status = ProcessingStatus()
    slot = ModelSlotManager(
        engine=engine,
        locator=locator,
        ledger=ledger,
        failure_registry=failures,
        status=status,
        load_timeout_sec=cfg("models.load_timeout_sec", 60),
        inference_timeout_sec=cfg("models.inference_timeout_sec", 300),
        inference_workers=cfg("models.inference_workers", 2),
        revalidate_on_reuse=cfg("models.revalidate_on_reuse", True),
    )
    downloader = ModelDownloader(
        locator=locator,
        ledger=ledger,
        shared_dir=cfg("storage.shared_download_dir"),
        app_dir=cfg("storage.app_download_dir", "data/downloaded_models"),
        connect_timeout_sec=cfg("download.connect_timeout_sec", 30),
        read_timeout_sec=cfg("download.read_timeout_sec", 300),
        chunk_size=cfg("download.chunk_size", 8192),
        lock_timeout_sec=cfg("download.lock_timeout_sec", 5),
        auth_token=cfg("download.auth_token") or os.getenv("POCKETINFER_DOWNLOAD_TOKEN"),
        session=session,
        progress_tracker=DownloadProgressTracker(),
    )
    return ModelManager(
        catalog=catalog,
        locator=locator,
        ledger=ledger,
        failure_registry=failures,
        slot_manager=slot,
        downloader=downloader,
        capture_provider=capture_provider or create_capture_provider(cfg("capture", {})),
        status=status,
        default_model_id=cfg("models.default_model", DEFAULT_MODEL_ID),
        scan_dirs=cfg("storage.scan_dirs", []),
        scan_extensions=cfg("storage.scan_extensions", [".task"]),
    )
