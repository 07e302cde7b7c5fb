# panelgen/features/prompts/service.py
from __future__ import annotations

from typing import Optional, Protocol, Sequence

from openai import AsyncOpenAI

from panelgen.config import Config
from panelgen.lib.angles import angle_guidance
from panelgen.logger import get_logger
from panelgen.schemas import AngleDetection, CharacterProfile, Panel, Scene

from .prompt import (
    EDIT_WRITER_SYSTEM,
    PROMPT_WRITER_SYSTEM,
    build_edit_instruction,
    build_edit_writer_request,
    build_panel_prompt,
    build_prompt_writer_request,
)

log = get_logger(__name__)

FIRST_PANEL_CONTEXT = "None (First Panel)"


class PromptSynthesizer(Protocol):
    async def build_panel_prompt(
        self,
        scene: Scene,
        previous_scene: Optional[Scene],
        profiles: Sequence[CharacterProfile],
        detection: AngleDetection,
    ) -> str: ...

    async def build_edit_instruction(self, panel: Panel, feedback: str) -> str: ...


def describe_characters(profiles: Sequence[CharacterProfile]) -> str:
    lines = [
        f"CHARACTER {i} - {p.display_name}: {p.physical_description}"
        for i, p in enumerate(profiles, start=1)
        if p.physical_description
    ]
    return "\n".join(lines) or "No character descriptions available."


def previous_context(previous_scene: Optional[Scene]) -> str:
    # Context comes from the previous scene's input, never from its rendered panel.
    if previous_scene is None:
        return FIRST_PANEL_CONTEXT
    parts = [previous_scene.scene_description.strip()]
    if previous_scene.text.strip():
        parts.append(f'Text: "{previous_scene.text.strip()}"')
    return "\n".join(parts)


def draft_prompt(
    scene: Scene,
    previous_scene: Optional[Scene],
    profiles: Sequence[CharacterProfile],
    detection: AngleDetection,
) -> str:
    return build_panel_prompt(
        panel_text=scene.text,
        scene_description=scene.scene_description,
        angle_guidance=angle_guidance(detection.angle),
        character_descriptions=describe_characters(profiles),
        previous_context=previous_context(previous_scene),
    )


class TemplatePromptSynthesizer:
    """Deterministic prompts, no network."""

    async def build_panel_prompt(self, scene, previous_scene, profiles, detection) -> str:
        return draft_prompt(scene, previous_scene, profiles, detection)

    async def build_edit_instruction(self, panel: Panel, feedback: str) -> str:
        return build_edit_instruction(feedback=feedback, panel_text=panel.panel_text)


class OpenAIPromptSynthesizer:
    """Lets a chat model polish the template draft into the final image prompt."""

    def __init__(self, client: AsyncOpenAI, *, model: str = "gpt-4o-mini", temperature: float = 0.7):
        self.client = client
        self.model = model
        self.temperature = temperature

    async def _complete(self, system: str, user: str, temperature: float) -> str:
        resp = await self.client.chat.completions.create(
            model=self.model,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        text = (resp.choices[0].message.content or "").strip()
        if not text:
            raise ValueError(f"{self.model} returned an empty completion")
        return text

    async def build_panel_prompt(self, scene, previous_scene, profiles, detection) -> str:
        draft = draft_prompt(scene, previous_scene, profiles, detection)
        prompt = await self._complete(PROMPT_WRITER_SYSTEM, build_prompt_writer_request(draft_prompt=draft),
                                      self.temperature)
        log.debug(f"image prompt ({detection.angle.value}): {prompt[:120]}")
        return prompt

    async def build_edit_instruction(self, panel: Panel, feedback: str) -> str:
        request = build_edit_writer_request(
            scene_description=panel.scene_description,
            panel_text=panel.panel_text,
            feedback=feedback,
        )
        # lower temperature: the instruction should follow the feedback closely
        return await self._complete(EDIT_WRITER_SYSTEM, request, 0.3)


def make_prompt_synthesizer(cfg: Config, openai_client: Optional[AsyncOpenAI] = None) -> PromptSynthesizer:
    if not cfg.use_openai_prompts:
        log.info("using template prompt synthesizer")
        return TemplatePromptSynthesizer()
    client = openai_client or AsyncOpenAI(api_key=cfg.openai_api_key)
    return OpenAIPromptSynthesizer(client, model=cfg.openai_text_model)
