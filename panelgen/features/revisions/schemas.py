# panelgen/features/revisions/schemas.py
from typing import Optional

from pydantic import BaseModel, Field

from panelgen.schemas import GenerationOptions, Panel, RevisionMode

class RerollRequest(BaseModel):
    options: Optional[GenerationOptions] = None

class EditRequest(BaseModel):
    feedback: str = Field(..., min_length=1, description="What to change, German or English")
    options: Optional[GenerationOptions] = None

class ResolveRequest(BaseModel):
    accept_new: bool = Field(..., description="True keeps the new image, False the old one")

class CandidateResponse(BaseModel):
    batch_id: str
    panel_number: int
    mode: RevisionMode
    old_panel: Panel
    new_panel: Panel

class ResolveResponse(BaseModel):
    batch_id: str
    panel_number: int
    accepted_new: bool
    panel: Panel
