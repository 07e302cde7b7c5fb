# panelgen/features/panels/router.py
from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import ValidationError

from panelgen.lib.errors import BatchGenerationError, UnknownCharacterError
from panelgen.logger import get_logger
from panelgen.services import Services

from .schemas import BatchCreatedResponse, BatchStatusResponse, GenerateBatchRequest
from .store import BatchRecord

router = APIRouter(prefix="/api/v1", tags=["panels"])
log = get_logger(__name__)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(503, "service not ready")
    return services


def get_batch(services: Services, batch_id: str) -> BatchRecord:
    rec = services.batches.get(batch_id)
    if rec is None:
        raise HTTPException(404, f"unknown batch_id {batch_id}")
    return rec


def batch_status(rec: BatchRecord) -> BatchStatusResponse:
    return BatchStatusResponse(
        batch_id=rec.batch_id,
        status=rec.status,
        total_panels=len(rec.scenes),
        completed_count=rec.completed_count,
        events=rec.events,
        panels=rec.panels,
        error=rec.error,
        failed_scene_index=rec.failed_scene_index,
    )


async def run_batch(services: Services, rec: BatchRecord) -> None:
    """Run the batch and record the outcome on `rec`. Never raises."""
    log.info(f"[{rec.batch_id}] generating {len(rec.scenes)} panel(s)")
    try:
        rec.panels = await services.orchestrator.generate_batch(
            rec.scenes,
            rec.profiles,
            on_progress=rec.record_progress,
            options=rec.options,
            background_color=rec.background_color,
        )
    except BatchGenerationError as e:
        log.warning(f"[{rec.batch_id}] failed at scene {e.scene_index + 1}: {e.cause}")
        rec.fail(str(e), e.scene_index)
    except Exception as e:
        # background task: nobody else would see this
        log.exception(f"[{rec.batch_id}] unexpected failure")
        rec.fail(f"internal error: {e}")
    else:
        log.info(f"[{rec.batch_id}] done")


@router.post("/panels/batches", status_code=202)
async def create_batch(req: GenerateBatchRequest, request: Request, response: Response, wait: bool = False):
    """
    Start generating one panel per scene. Returns immediately with a batch id
    to poll, or with `?wait=true` answers once the batch has finished.
    """
    services = get_services(request)
    try:
        scenes = req.to_scenes()
    except (ValueError, ValidationError) as e:
        raise HTTPException(422, f"invalid storyboard: {e}")

    try:
        profiles = services.registry.require(dict.fromkeys(c for s in scenes for c in s.characters))
    except UnknownCharacterError as e:
        raise HTTPException(422, str(e))

    rec = services.batches.create(scenes, profiles, options=req.options, background_color=req.background_color)

    if wait:
        await run_batch(services, rec)
        response.status_code = 200
        return batch_status(rec)

    rec.task = asyncio.create_task(run_batch(services, rec))
    return BatchCreatedResponse(
        batch_id=rec.batch_id,
        status=rec.status,
        total_panels=len(scenes),
        status_url=f"/api/v1/panels/batches/{rec.batch_id}",
    )


@router.get("/panels/batches/{batch_id}", response_model=BatchStatusResponse)
async def get_batch_status(batch_id: str, request: Request):
    return batch_status(get_batch(get_services(request), batch_id))
