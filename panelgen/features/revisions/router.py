# panelgen/features/revisions/router.py
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from panelgen.features.panels.router import get_batch, get_services
from panelgen.features.panels.store import BatchRecord
from panelgen.lib.errors import PanelPipelineError, StaleCandidateError, status_code_for
from panelgen.logger import get_logger
from panelgen.schemas import PanelRevisionCandidate

from .schemas import CandidateResponse, EditRequest, RerollRequest, ResolveRequest, ResolveResponse

router = APIRouter(prefix="/api/v1", tags=["revisions"])
log = get_logger(__name__)


def _panel_index(rec: BatchRecord, panel_number: int) -> int:
    if rec.status != "completed":
        raise HTTPException(409, f"batch {rec.batch_id} is {rec.status}; revisions need a completed batch")
    if panel_number < 1 or panel_number > len(rec.panels):
        raise HTTPException(404, f"batch {rec.batch_id} has no panel {panel_number}")
    return panel_number - 1


def _candidate_response(rec: BatchRecord, cand: PanelRevisionCandidate) -> CandidateResponse:
    return CandidateResponse(
        batch_id=rec.batch_id,
        panel_number=cand.old_panel.panel_number,
        mode=cand.mode,
        old_panel=cand.old_panel,
        new_panel=cand.new_panel,
    )


@router.post("/panels/batches/{batch_id}/panels/{panel_number}/reroll", response_model=CandidateResponse)
async def reroll_panel(batch_id: str, panel_number: int, req: RerollRequest, request: Request):
    services = get_services(request)
    rec = get_batch(services, batch_id)
    index = _panel_index(rec, panel_number)
    try:
        cand = await services.revisions.reroll(rec.panels, index, rec.profiles, options=req.options or rec.options)
    except PanelPipelineError as e:
        log.warning(f"[{batch_id}] reroll of panel {panel_number} failed: {e}")
        raise HTTPException(status_code_for(e), str(e))
    rec.candidates[index] = cand
    return _candidate_response(rec, cand)


@router.post("/panels/batches/{batch_id}/panels/{panel_number}/edit", response_model=CandidateResponse)
async def edit_panel(batch_id: str, panel_number: int, req: EditRequest, request: Request):
    services = get_services(request)
    rec = get_batch(services, batch_id)
    index = _panel_index(rec, panel_number)
    try:
        cand = await services.revisions.edit(
            rec.panels, index, req.feedback, rec.profiles, options=req.options or rec.options
        )
    except (PanelPipelineError, ValueError) as e:
        log.warning(f"[{batch_id}] edit of panel {panel_number} failed: {e}")
        raise HTTPException(status_code_for(e), str(e))
    rec.candidates[index] = cand
    return _candidate_response(rec, cand)


@router.post("/panels/batches/{batch_id}/panels/{panel_number}/resolve", response_model=ResolveResponse)
async def resolve_panel(batch_id: str, panel_number: int, req: ResolveRequest, request: Request):
    services = get_services(request)
    rec = get_batch(services, batch_id)
    index = _panel_index(rec, panel_number)
    cand = rec.candidates.get(index)
    if cand is None:
        raise HTTPException(404, f"no pending revision for panel {panel_number}")
    try:
        rec.panels = services.revisions.resolve(rec.panels, cand, req.accept_new)
    except StaleCandidateError as e:
        rec.candidates.pop(index, None)
        raise HTTPException(409, str(e))
    rec.candidates.pop(index, None)
    return ResolveResponse(
        batch_id=rec.batch_id,
        panel_number=panel_number,
        accepted_new=req.accept_new,
        panel=rec.panels[index],
    )
