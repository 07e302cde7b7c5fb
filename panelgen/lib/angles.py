# panelgen/lib/angles.py
"""
Keyword-based camera angle detection and angle-aware reference selection.

Reference images follow the naming convention `{character}_{angle}[_{variant}].{ext}`,
e.g. `theresa_frontal.jpg`, `theresa_profile_left_2.png`.
"""
from __future__ import annotations

import os
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from panelgen.logger import get_logger
from panelgen.schemas import AngleDetection, CameraAngle

log = get_logger(__name__)

LOW_CONFIDENCE = 0.5
_PER_KEYWORD = 0.3

# Order matters: on equal match counts the earlier angle wins.
ANGLE_KEYWORDS: Dict[CameraAngle, Tuple[str, ...]] = {
    CameraAngle.PROFILE_LEFT: (
        "profile", "side view", "from the side", "from left side", "looking left",
        "turns left", "facing left", "left profile", "left side view",
    ),
    CameraAngle.PROFILE_RIGHT: (
        "side view", "from the side", "from right side", "looking right",
        "turns right", "facing right", "right profile", "right side view",
    ),
    CameraAngle.THREE_QUARTER_LEFT: (
        "three quarter left", "3/4 left", "three-quarter left", "slightly turned left",
        "angled left", "turned to the left", "over left shoulder", "quarter turn left",
    ),
    CameraAngle.THREE_QUARTER_RIGHT: (
        "three quarter right", "3/4 right", "three-quarter right", "slightly turned right",
        "angled right", "turned to the right", "over right shoulder", "looking back",
        "glancing back", "quarter turn right", "over shoulder",
    ),
    CameraAngle.BACK: (
        "from behind", "back view", "rear view", "walking away", "turned away",
        "back to camera", "seen from behind",
    ),
    CameraAngle.FRONTAL: (
        "facing camera", "looking at viewer", "direct eye contact", "frontal view",
        "straight on", "faces forward", "front view", "looking directly", "straight ahead",
    ),
    CameraAngle.OVERHEAD: (
        "overhead", "top down", "bird's eye", "from above", "looking down at", "aerial view",
    ),
    CameraAngle.LOW_ANGLE: (
        "low angle", "from below", "looking up", "worm's eye", "shot from below",
    ),
}

_SIMILAR: Dict[CameraAngle, Tuple[CameraAngle, ...]] = {
    CameraAngle.FRONTAL: (CameraAngle.THREE_QUARTER_LEFT, CameraAngle.THREE_QUARTER_RIGHT),
    CameraAngle.THREE_QUARTER_LEFT: (CameraAngle.FRONTAL, CameraAngle.PROFILE_LEFT),
    CameraAngle.THREE_QUARTER_RIGHT: (CameraAngle.FRONTAL, CameraAngle.PROFILE_RIGHT),
    CameraAngle.PROFILE_LEFT: (CameraAngle.THREE_QUARTER_LEFT, CameraAngle.BACK),
    CameraAngle.PROFILE_RIGHT: (CameraAngle.THREE_QUARTER_RIGHT, CameraAngle.BACK),
    CameraAngle.BACK: (CameraAngle.PROFILE_LEFT, CameraAngle.PROFILE_RIGHT),
    CameraAngle.OVERHEAD: (CameraAngle.FRONTAL,),
    CameraAngle.LOW_ANGLE: (CameraAngle.FRONTAL,),
    CameraAngle.UNKNOWN: (CameraAngle.FRONTAL,),
}

_GUIDANCE: Dict[CameraAngle, str] = {
    CameraAngle.FRONTAL: "Character faces directly toward camera. Front view.",
    CameraAngle.THREE_QUARTER_LEFT: "Character turned approximately 45° to the left. Three-quarter view.",
    CameraAngle.THREE_QUARTER_RIGHT: "Character turned approximately 45° to the right. Three-quarter view.",
    CameraAngle.PROFILE_LEFT: "Character shown from the left side. Full side profile view.",
    CameraAngle.PROFILE_RIGHT: "Character shown from the right side. Full side profile view.",
    CameraAngle.BACK: "Character shown from behind. Back view.",
    CameraAngle.OVERHEAD: "Camera positioned above, looking down at character.",
    CameraAngle.LOW_ANGLE: "Camera positioned below, looking up at character.",
    CameraAngle.UNKNOWN: "Camera angle unspecified - use natural framing.",
}

# Angles a reference file may be tagged with (everything but UNKNOWN)
_TAGGABLE = {a.value: a for a in CameraAngle if a is not CameraAngle.UNKNOWN}


def classify(scene_description: str) -> AngleDetection:
    """
    Pick the camera angle whose keyword list has the most hits in the description.
    With no hits at all the result is FRONTAL at low confidence, never UNKNOWN.
    """
    text = (scene_description or "").lower()
    best: Optional[Tuple[CameraAngle, List[str]]] = None
    for angle, keywords in ANGLE_KEYWORDS.items():
        hits = [k for k in keywords if k in text]
        if hits and (best is None or len(hits) > len(best[1])):
            best = (angle, hits)

    if best is None:
        log.debug("no angle keywords matched; defaulting to frontal")
        return AngleDetection(angle=CameraAngle.FRONTAL, confidence=_PER_KEYWORD)

    angle, hits = best
    confidence = min(len(hits) * _PER_KEYWORD, 1.0)
    log.debug(f"detected angle {angle.value} ({confidence:.1f}) from {hits}")
    return AngleDetection(angle=angle, confidence=confidence, keywords=tuple(hits))


def get_similar_angles(angle: CameraAngle) -> List[CameraAngle]:
    return list(_SIMILAR.get(angle, (CameraAngle.FRONTAL,)))


def angle_guidance(angle: CameraAngle) -> str:
    return _GUIDANCE.get(angle, _GUIDANCE[CameraAngle.UNKNOWN])


def fallback_chain(angle: CameraAngle) -> List[CameraAngle]:
    """Exact angle, then similar angles, then frontal. Each angle at most once."""
    chain: List[CameraAngle] = []
    for a in [angle, *get_similar_angles(angle), CameraAngle.FRONTAL]:
        if a not in chain:
            chain.append(a)
    return chain


def select_references_for_angle(
    angle: CameraAngle,
    urls_by_angle: Mapping[CameraAngle, Sequence[str]],
    max_images: int = 3,
) -> List[str]:
    """
    Walk the fallback chain and collect up to `max_images` URLs. When the chain
    finds nothing, take any other tagged angle. Empty only when every bucket is empty.
    """
    chain = fallback_chain(angle)
    selected: List[str] = []
    for a in chain:
        if len(selected) >= max_images:
            break
        refs = urls_by_angle.get(a) or ()
        take = list(refs[: max_images - len(selected)])
        if take:
            log.debug(f"{angle.value}: +{len(take)} refs from {a.value}")
            selected.extend(take)
    if selected:
        return selected

    for a in CameraAngle:
        refs = urls_by_angle.get(a) or ()
        if a not in chain and refs:
            log.debug(f"{angle.value}: nothing on the fallback chain, using {a.value}")
            return list(refs[:max_images])
    return []


def parse_reference_filename(filename: str) -> Optional[Tuple[str, CameraAngle, Optional[str]]]:
    """
    Split `{character}_{angle}[_{variant}].{ext}` into (character, angle, variant).
    Angle names span one to three underscore-separated parts (`back`,
    `profile_left`, `three_quarter_left`). Returns None when no known angle is found.
    """
    stem, _ = os.path.splitext(os.path.basename(filename))
    parts = stem.split("_")
    if len(parts) < 2:
        return None

    character = parts[0].lower()
    rest = [p.lower() for p in parts[1:]]
    for width in (3, 2, 1):
        if len(rest) < width:
            continue
        angle = _TAGGABLE.get("_".join(rest[:width]))
        if angle is not None:
            variant = "_".join(parts[1 + width:]) or None
            return character, angle, variant

    log.debug(f"reference file without angle tag: {filename}")
    return None
