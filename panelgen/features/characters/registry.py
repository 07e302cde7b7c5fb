# panelgen/features/characters/registry.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from panelgen.config import Config
from panelgen.lib.errors import UnknownCharacterError
from panelgen.logger import get_logger
from panelgen.schemas import CharacterProfile

log = get_logger(__name__)

# The same image listed several times weighs it more heavily with the provider.
THERESA = CharacterProfile(
    id="theresa",
    display_name="Theresa",
    physical_description=(
        "Woman in early 40s. Light blonde hair tied back in a low bun with side-swept wispy bangs. "
        "Large round to slightly panto-shaped full-rim glasses in matte black acetate, modern retro style. "
        "Plain black long-sleeve crew-neck sweater, casual minimal style."
    ),
    reference_image_paths=["ref-1.jpg", "ref-1.jpg", "ref-1.jpg", "ref-1.jpg"],
    preferred_model="nano-banana-pro",
)

BEN = CharacterProfile(
    id="ben",
    display_name="Ben",
    physical_description=(
        "Man in mid 30s. Short dark brown hair, casual style. "
        "Friendly, approachable appearance. Casual clothing, modern style."
    ),
    reference_image_paths=["ben-ref.jpg", "ben-ref.jpg", "ben-ref.jpg", "ben-ref.jpg"],
    preferred_model="nano-banana-pro",
)

DEFAULT_PROFILES = (THERESA, BEN)


class CharacterRegistry:
    """Read-only lookup of character profiles by id (case-insensitive)."""

    def __init__(self, profiles: Iterable[CharacterProfile]):
        self._profiles: Dict[str, CharacterProfile] = {}
        for p in profiles:
            if p.id in self._profiles:
                log.warning(f"duplicate character id {p.id!r}; keeping the first definition")
                continue
            self._profiles[p.id] = p

    @classmethod
    def from_file(cls, path: str | Path) -> "CharacterRegistry":
        """Load `[{id, display_name, physical_description, reference_image_paths, preferred_model}, ...]`."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("characters", [])
        profiles = [CharacterProfile.model_validate(item) for item in data]
        log.info(f"loaded {len(profiles)} character profile(s) from {path}")
        return cls(profiles)

    @classmethod
    def from_config(cls, cfg: Config) -> "CharacterRegistry":
        if cfg.characters_file:
            return cls.from_file(cfg.characters_file)
        return cls(DEFAULT_PROFILES)

    def get(self, character_id: str) -> Optional[CharacterProfile]:
        return self._profiles.get((character_id or "").strip().lower())

    def require(self, character_ids: Iterable[str]) -> Dict[str, CharacterProfile]:
        """Profiles for every id, keyed by normalized id. Raises UnknownCharacterError listing the misses."""
        found: Dict[str, CharacterProfile] = {}
        missing: List[str] = []
        for cid in character_ids:
            p = self.get(cid)
            if p is None:
                missing.append(cid)
            else:
                found[p.id] = p
        if missing:
            raise UnknownCharacterError(missing)
        return found

    def all(self) -> List[CharacterProfile]:
        return list(self._profiles.values())

    def __contains__(self, character_id: str) -> bool:
        return self.get(character_id) is not None

    def __len__(self) -> int:
        return len(self._profiles)
