from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

Number = Union[int, float]


class LogLevel(str, Enum):
    verbose = "verbose"
    info = "info"
    warn = "warn"
    error = "error"


class GlRenderer(str, Enum):
    swangle = "swangle"
    angle = "angle"
    egl = "egl"
    swiftshader = "swiftshader"
    vulkan = "vulkan"
    angle_egl = "angle-egl"


class ChromiumOptions(BaseModel):
    headless: bool = True
    ignore_certificate_errors: bool = False
    disable_web_security: bool = False
    gl: Optional[GlRenderer] = None
    user_agent: Optional[str] = None
    enable_multi_process_on_linux: bool = False


class CompositionMetadata(BaseModel):
    """Metadata of one composition as reported by the bundle."""

    id: str
    width: Number
    height: Number
    fps: Number
    duration_in_frames: Number = Field(..., alias="durationInFrames")
    default_props: Dict[str, Any] = Field(default_factory=dict, alias="defaultProps")
    props: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("default_props", "props", mode="before")
    @classmethod
    def _null_props(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("width", "height", "fps", "duration_in_frames")
    @classmethod
    def _finite(cls, value: Number) -> Number:
        # JSON has no NaN or Infinity; such values would be emitted as null.
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"must be a finite number, but is {value}")
        return value


class DimensionOverrides(BaseModel):
    width: Optional[Number] = None
    height: Optional[Number] = None


class ProbeRequest(BaseModel):
    bundle_location: str = Field(..., description="Bundle directory on disk or http(s) serve URL.")
    input_props: Dict[str, Any] = Field(default_factory=dict)
    env_variables: Dict[str, str] = Field(default_factory=dict)
    timeout_in_milliseconds: Optional[float] = None
    chromium_options: Optional[ChromiumOptions] = None
    browser_executable: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    log_level: Optional[LogLevel] = None


class DiscoverRequest(ProbeRequest):
    pass


class ValidateRequest(ProbeRequest):
    composition_id: str
    force_width: Optional[Number] = None
    force_height: Optional[Number] = None
    frame: Optional[Number] = Field(default=None, description="Frame that must be renderable.")


class ProbeKind(str, Enum):
    discover = "discover"
    validate = "validate"


class ProbeStatus(str, Enum):
    executing = "executing"
    finished = "finished"
    failed = "failed"


class Probe(BaseModel):
    id: str
    kind: ProbeKind
    bundle_location: str
    composition_id: Optional[str] = None
    status: ProbeStatus
    composition_ids: List[str] = Field(default_factory=list)
    error_type: Optional[str] = None
    message: Optional[str] = None
    duration_ms: Optional[float] = None
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None

    model_config = {"from_attributes": True}


class ConfigResponse(BaseModel):
    default_timeout_in_milliseconds: float
    browser_executable: Optional[str] = None
    chromium_options: ChromiumOptions = Field(default_factory=ChromiumOptions)
    port: Optional[int] = None
    device_scale_factor: float = 1.0
    log_level: LogLevel = LogLevel.info


class ConfigUpdate(BaseModel):
    default_timeout_in_milliseconds: Optional[float] = None
    browser_executable: Optional[str] = None
    chromium_options: Optional[ChromiumOptions] = None
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    device_scale_factor: Optional[float] = None
    log_level: Optional[LogLevel] = None
