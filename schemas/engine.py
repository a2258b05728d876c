from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


# --- Data Models for Engine Information ---
class EngineInfo(BaseModel):
    """
    Holds information about a specific engine instance.
    Returned by IEngine.get_info().
    """
    engine_name: str = Field(..., description="Name of the inference engine")
    engine_version: Optional[str] = Field(None, description="Version of the inference engine")
    loaded_handles: int = Field(0, description="Number of handles the engine has not released yet")
    available_devices: List[str] = Field(default_factory=list, description="Computation devices (e.g., ['CPU', 'GPU'])")
    engine_status: str = Field("uninitialized", description="Current status of the engine (e.g., uninitialized, ready, error)")
    additional_info: Dict[str, Any] = Field(default_factory=dict, description="Any other engine-specific information")


class GenerationInput(BaseModel):
    """
    Input handed to IEngine.infer().
    """
    prompt: str
    temperature: float
    top_k: int
    top_p: float
    max_tokens: int
    image_bytes: Optional[bytes] = None
