# panelgen/features/characters/router.py
from typing import List

from fastapi import APIRouter, HTTPException, Request

from panelgen.features.panels.router import get_services
from panelgen.schemas import CharacterProfile

router = APIRouter(prefix="/api/v1", tags=["characters"])

@router.get("/characters", response_model=List[CharacterProfile])
async def list_characters(request: Request):
    return get_services(request).registry.all()

@router.get("/characters/{character_id}", response_model=CharacterProfile)
async def get_character(character_id: str, request: Request):
    profile = get_services(request).registry.get(character_id)
    if profile is None:
        raise HTTPException(404, f"unknown character {character_id}")
    return profile
