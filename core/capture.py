# pocketinfer/core/capture.py
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from schemas.request import CapturePreference
from utils.exceptions import CaptureError
from utils.imaging import scale_image

logger = logging.getLogger(f"pocketinfer.{__name__}")


class CaptureProvider(ABC):
    """Source of live frames attached to generation requests."""

    @abstractmethod
    def capture(self, preference: CapturePreference) -> bytes:
        """Returns JPEG bytes or raises CaptureError."""
        raise NotImplementedError

    @property
    def available(self) -> bool:
        return True


class UnavailableCaptureProvider(CaptureProvider):
    def capture(self, preference: CapturePreference) -> bytes:
        raise CaptureError("No camera is configured on this host")

    @property
    def available(self) -> bool:
        return False


class StaticImageCaptureProvider(CaptureProvider):
    """Serves a fixed image file, for hosts without a camera and for tests."""

    def __init__(self, image_path: str):
        self.image_path = Path(image_path)

    def capture(self, preference: CapturePreference) -> bytes:
        try:
            raw = self.image_path.read_bytes()
        except OSError as e:
            raise CaptureError(f"Could not read capture image {self.image_path}: {e}") from e
        try:
            return scale_image(raw, max(preference.max_width, preference.max_height), quality=preference.quality)
        except ValueError as e:
            raise CaptureError(str(e)) from e

    @property
    def available(self) -> bool:
        return self.image_path.is_file()


def create_capture_provider(config: Optional[Dict[str, Any]]) -> CaptureProvider:
    config = config or {}
    provider = (config.get("provider") or "none").lower()
    if provider == "static":
        path = config.get("static_image_path")
        if not path:
            logger.warning("capture.provider is 'static' but capture.static_image_path is not set; capture disabled.")
            return UnavailableCaptureProvider()
        logger.info(f"Static capture provider serving {path}")
        return StaticImageCaptureProvider(path)
    if provider != "none":
        logger.warning(f"Unknown capture provider '{provider}'; capture disabled.")
    return UnavailableCaptureProvider()
