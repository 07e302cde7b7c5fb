# panelgen/features/revisions/service.py
"""
Single-panel revisions.

A reroll re-renders the panel from its original prompt and the characters'
references only. An edit sends the current image first so the provider keeps
its composition, then applies the user's feedback. Both return a candidate;
nothing changes until the candidate is resolved.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from panelgen.features.panels.service import resolve_options, select_scene_references
from panelgen.features.prompts.service import PromptSynthesizer
from panelgen.features.references.service import BatchReferences, ReferenceResolver
from panelgen.lib.angles import classify
from panelgen.lib.errors import StaleCandidateError
from panelgen.lib.generation_client import MAX_REFERENCE_IMAGES, GenerationClient
from panelgen.logger import get_logger
from panelgen.schemas import CharacterProfile, GenerationOptions, Panel, PanelRevisionCandidate

log = get_logger(__name__)

REROLL_CLAUSE = (
    "Regenerate this comic panel illustration with the same composition, pose, and scene. "
    "CRITICAL: This MUST remain a comic illustration - NOT a photograph, NOT realistic. "
    "Improve the character's facial features to better match the reference images: adjust facial "
    "structure, eye shape, nose proportions, and glasses style to be more similar to references. "
    "Maintain the illustrated comic art style with clean lines and soft shading. "
    "Keep all text, speech bubbles, and panel elements exactly as they are."
)

# -------------------------------------------------------------------
# Text change extraction
# -------------------------------------------------------------------

_Q = "[\"'“”„‘’«»]"
# the closing quote must be followed by whitespace, punctuation or the end; apostrophes inside do not count
_CLOSE = rf"{_Q}(?=$|[\s.,;:!?)])"

_TEXT_CHANGE_PATTERNS = (
    # change (the) text from 'X' to 'Y'
    re.compile(
        rf"(?:change|replace)\s+(?:the\s+)?text\s+from\s+{_Q}(?P<old>.*?){_Q}\s+(?:to|with)\s+{_Q}(?P<new>.*?){_CLOSE}",
        re.IGNORECASE,
    ),
    # change (the) text to 'Y'
    re.compile(rf"change\s+(?:the\s+)?text\s+to\s+{_Q}(?P<new>.*?){_CLOSE}", re.IGNORECASE),
    # ändere (den) Text (von 'X') zu/in/auf 'Y'
    re.compile(
        rf"änder(?:e|n)?\s+(?:den\s+)?text\s+(?:von\s+{_Q}(?P<old>.*?){_Q}\s+)?(?:zu|in|auf)\s+{_Q}(?P<new>.*?){_CLOSE}",
        re.IGNORECASE,
    ),
    # unquoted single words: change text from X to Y
    re.compile(r"change\s+(?:the\s+)?text\s+from\s+(?P<old>\S+)\s+to\s+(?P<new>[^\s.,;!]+)", re.IGNORECASE),
)


@dataclass(frozen=True)
class TextChange:
    old: Optional[str]
    new: str


def extract_text_change(feedback: str) -> Optional[TextChange]:
    """Find an explicit text replacement instruction in free-form feedback. None when there is none."""
    for pattern in _TEXT_CHANGE_PATTERNS:
        m = pattern.search(feedback or "")
        if m:
            groups = m.groupdict()
            return TextChange(old=groups.get("old"), new=groups["new"])
    return None

# -------------------------------------------------------------------
# Controller
# -------------------------------------------------------------------

def _panel_at(panels: Sequence[Panel], index: int) -> Panel:
    if index < 0 or index >= len(panels):
        raise IndexError(f"no panel at index {index} (have {len(panels)})")
    return panels[index]


class RevisionController:
    def __init__(
        self,
        client: GenerationClient,
        resolver: ReferenceResolver,
        synthesizer: PromptSynthesizer,
        *,
        max_reference_images: int = MAX_REFERENCE_IMAGES,
        max_references_per_character: int = 4,
    ):
        self.client = client
        self.resolver = resolver
        self.synthesizer = synthesizer
        self.max_reference_images = max_reference_images
        self.max_references_per_character = max_references_per_character

    async def _character_refs(self, panel: Panel, profiles: Mapping[str, CharacterProfile], cap: int) -> List[str]:
        ref_sets = await BatchReferences(self.resolver, profiles).resolve_all(
            c for c in panel.characters if c in profiles
        )
        angle = classify(panel.scene_description).angle
        return select_scene_references(
            panel.characters,
            angle,
            ref_sets,
            per_character=self.max_references_per_character,
            cap=cap,
        )

    async def reroll(
        self,
        panels: Sequence[Panel],
        index: int,
        profiles: Mapping[str, CharacterProfile],
        options: Optional[GenerationOptions] = None,
    ) -> PanelRevisionCandidate:
        old = _panel_at(panels, index)
        refs = await self._character_refs(old, profiles, self.max_reference_images)
        prompt = f"{old.image_prompt}\n\n{REROLL_CLAUSE}"
        opts = resolve_options(options, old.characters, profiles)
        log.info(f"rerolling panel {old.panel_number} with {len(refs)} character reference(s)")

        image = await self.client.generate(prompt, refs, opts)
        new = old.model_copy(update={"image_data": image.data_url, "image_url": image.url})
        return PanelRevisionCandidate(panel_index=index, old_panel=old, new_panel=new, mode="reroll")

    async def edit(
        self,
        panels: Sequence[Panel],
        index: int,
        feedback: str,
        profiles: Mapping[str, CharacterProfile],
        options: Optional[GenerationOptions] = None,
    ) -> PanelRevisionCandidate:
        old = _panel_at(panels, index)
        if not (feedback or "").strip():
            raise ValueError("feedback must not be empty")

        current_url = await self.resolver.host_inline(old.image_data)
        char_refs = await self._character_refs(old, profiles, self.max_reference_images - 1)
        refs = [current_url, *char_refs]
        instruction = await self.synthesizer.build_edit_instruction(old, feedback)
        opts = resolve_options(options, old.characters, profiles)
        log.info(f"editing panel {old.panel_number}: {feedback[:80]!r}")

        image = await self.client.generate(instruction, refs, opts)
        update = {"image_data": image.data_url, "image_url": image.url}
        # the instruction spells the change out even when the feedback is free-form
        change = extract_text_change(instruction) or extract_text_change(feedback)
        if change is not None:
            log.info(f"panel {old.panel_number} text: {old.panel_text!r} -> {change.new!r}")
            update["panel_text"] = change.new
        new = old.model_copy(update=update)
        return PanelRevisionCandidate(panel_index=index, old_panel=old, new_panel=new, mode="edit")

    @staticmethod
    def resolve(panels: Sequence[Panel], candidate: PanelRevisionCandidate, accept_new: bool) -> List[Panel]:
        """
        Return a new list with the candidate's slot set to the chosen side.
        The slot keeps its panel_number; `panels` itself is not modified.
        """
        i = candidate.panel_index
        if i >= len(panels) or panels[i] != candidate.old_panel:
            raise StaleCandidateError(f"panel {i + 1} changed since the candidate was created")
        chosen = candidate.new_panel if accept_new else candidate.old_panel
        out = list(panels)
        out[i] = chosen.model_copy(update={"panel_number": panels[i].panel_number})
        return out
