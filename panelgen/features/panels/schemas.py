# panelgen/features/panels/schemas.py
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from panelgen.lib.json_tools import parse_storyboard
from panelgen.schemas import GenerationOptions, Panel, ProgressEvent, Scene

class GenerateBatchRequest(BaseModel):
    scenes: Optional[List[Scene]] = Field(None, description="Scenes in reading order")
    storyboard: Optional[str] = Field(
        None, description="Raw storyboard JSON (may be fenced in ```json), used when `scenes` is not given"
    )
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    background_color: Optional[str] = Field(None, description="Panel background, e.g. #e8dfd0")

    @model_validator(mode="after")
    def _scenes_or_storyboard(self):
        if self.scenes is None and self.storyboard is None:
            raise ValueError("provide either 'scenes' or 'storyboard'")
        if self.scenes is not None and self.storyboard is not None:
            raise ValueError("provide only one of 'scenes' or 'storyboard'")
        if self.scenes is not None and not self.scenes:
            raise ValueError("'scenes' must not be empty")
        return self

    def to_scenes(self) -> List[Scene]:
        if self.scenes is not None:
            return list(self.scenes)
        return parse_storyboard(self.storyboard or "")

class BatchCreatedResponse(BaseModel):
    batch_id: str
    status: str
    total_panels: int
    status_url: str

class BatchStatusResponse(BaseModel):
    batch_id: str
    status: str
    total_panels: int
    completed_count: int = 0
    events: List[ProgressEvent] = Field(default_factory=list)
    panels: List[Panel] = Field(default_factory=list)
    error: Optional[str] = None
    failed_scene_index: Optional[int] = None
