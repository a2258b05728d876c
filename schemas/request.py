# pocketinfer/schemas/request.py
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, Dict, Any


class CameraFacing(str, Enum):
    REAR = "rear"
    FRONT = "front"


class ImageScaling(str, Enum):
    """Longest-edge limit applied to an image returned to the caller."""
    NONE = "NONE"
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    ULTRA = "ULTRA"

    @property
    def max_dimension(self) -> Optional[int]:
        return {
            "NONE": None,
            "SMALL": 512,
            "MEDIUM": 1024,
            "LARGE": 2048,
            "ULTRA": 4096,
        }[self.value]


class CapturePreference(BaseModel):
    """
    Asks the capture collaborator for a live frame instead of an inline image.
    """
    camera: CameraFacing = CameraFacing.REAR
    quality: int = Field(90, ge=1, le=100)
    max_width: int = Field(1024, gt=0)
    max_height: int = Field(1024, gt=0)


class GenerationRequest(BaseModel):
    """
    Structured generation request delivered by the HTTP layer.
    `text` is accepted as an alias of `prompt_text`.
    """
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    prompt_text: str = Field(..., min_length=1, description="User prompt")
    model_id: Optional[str] = Field(None, description="Catalog id or display name; blank selects the default model")
    image_base64: Optional[str] = Field(None, description="Inline image, raw base64 or data URL")
    capture: Optional[CapturePreference] = Field(None, description="Capture a live frame and attach it")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    top_k: Optional[int] = Field(None, gt=0)
    top_p: Optional[float] = Field(None, gt=0.0, le=1.0)
    max_tokens: Optional[int] = Field(None, gt=0)
    return_image: bool = False
    image_scaling: ImageScaling = ImageScaling.MEDIUM

    @model_validator(mode="before")
    @classmethod
    def _accept_text_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "prompt_text" not in data and "text" in data:
            data = dict(data)
            data["prompt_text"] = data.pop("text")
        return data


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    model_name: str
    inference_time_ms: float
    token_estimate: int
    backend: str
    multimodal: bool
    image_attached: bool = False
    thinking: bool = False


class GenerationResult(BaseModel):
    response_text: str
    thinking: Optional[str] = None
    license: Optional[str] = None
    metadata: ResponseMetadata
    image_base64: Optional[str] = None
    warnings: Optional[Dict[str, Any]] = None
