# panelgen/schemas.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from panelgen.config import config


class CameraAngle(str, Enum):
    FRONTAL = "frontal"
    THREE_QUARTER_LEFT = "three_quarter_left"
    THREE_QUARTER_RIGHT = "three_quarter_right"
    PROFILE_LEFT = "profile_left"
    PROFILE_RIGHT = "profile_right"
    BACK = "back"
    OVERHEAD = "overhead"
    LOW_ANGLE = "low_angle"
    UNKNOWN = "unknown"


class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


BatchStatus = Literal["generating_prompts", "generating_avatars", "completed", "failed"]
RevisionMode = Literal["reroll", "edit"]

# -------------------------------------------------------------------
# Inputs
# -------------------------------------------------------------------

class Scene(BaseModel):
    """One storyboard beat: dialogue/caption text plus the visual description."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str = Field("", description="Dialogue or caption shown in the panel")
    scene_description: str = Field(..., alias="scene", description="Visual description of the shot")
    characters: List[str] = Field(
        default_factory=list,
        validate_default=True,
        description="Character ids appearing in the scene; empty means the default character",
    )

    @field_validator("characters", mode="before")
    @classmethod
    def _dedupe_characters(cls, v):
        if isinstance(v, str):
            v = [v]
        seen: List[str] = []
        for c in v or []:
            cid = str(c).strip().lower()
            if cid and cid not in seen:
                seen.append(cid)
        if not seen and config.default_character_id:
            seen.append(config.default_character_id.lower())
        return seen


class CharacterProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    physical_description: str = ""
    reference_image_paths: List[str] = Field(default_factory=list)
    preferred_model: Optional[str] = None

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if not v:
            raise ValueError("character id must not be empty")
        return v


class GenerationOptions(BaseModel):
    """Per-request overrides; anything left as None falls back to config."""
    model: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    output_format: Optional[str] = None
    negative_prompt: Optional[str] = None

# -------------------------------------------------------------------
# References
# -------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ReferenceSet:
    """Hosted reference images of one character. Shared, never mutated."""
    character_id: str
    urls_by_angle: Mapping[CameraAngle, Tuple[str, ...]] = field(default_factory=dict)
    all_urls: Tuple[str, ...] = ()

    def __post_init__(self):
        frozen = {CameraAngle(k): tuple(v) for k, v in dict(self.urls_by_angle).items() if v}
        object.__setattr__(self, "urls_by_angle", MappingProxyType(frozen))
        object.__setattr__(self, "all_urls", tuple(self.all_urls))

    @property
    def is_empty(self) -> bool:
        return not self.all_urls


@dataclass(frozen=True)
class AngleDetection:
    angle: CameraAngle
    confidence: float
    keywords: Tuple[str, ...] = ()

# -------------------------------------------------------------------
# Provider jobs
# -------------------------------------------------------------------

class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    model: str


class GenerationJob(BaseModel):
    job_id: str
    state: JobState
    raw_state: Optional[str] = None
    result_image_url: Optional[str] = None
    error_message: Optional[str] = None


class GeneratedImage(BaseModel):
    url: str
    data_url: str

# -------------------------------------------------------------------
# Outputs
# -------------------------------------------------------------------

class Panel(BaseModel):
    model_config = ConfigDict(frozen=True)

    panel_number: int = Field(..., ge=1)
    panel_text: str = ""
    scene_description: str = ""
    image_data: str = Field(..., description="Rendered panel as a data URL")
    image_prompt: str = ""
    background_color: str = Field(default_factory=lambda: config.default_background_color)
    image_url: Optional[str] = Field(None, description="Provider URL the image was fetched from")
    characters: List[str] = Field(default_factory=list)


class PanelRevisionCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    panel_index: int = Field(..., ge=0)
    old_panel: Panel
    new_panel: Panel
    mode: RevisionMode


class ProgressEvent(BaseModel):
    current_panel_index: int
    total_panels: int
    status: BatchStatus
    message: str = ""
    completed_count: int = 0
