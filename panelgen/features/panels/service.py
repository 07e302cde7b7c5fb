# panelgen/features/panels/service.py
from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

from panelgen.features.prompts.service import PromptSynthesizer
from panelgen.features.references.service import BatchReferences, ReferenceResolver
from panelgen.lib.angles import classify, select_references_for_angle
from panelgen.lib.errors import BatchGenerationError
from panelgen.lib.generation_client import MAX_REFERENCE_IMAGES, GenerationClient
from panelgen.logger import get_logger
from panelgen.schemas import (
    AngleDetection,
    BatchStatus,
    CameraAngle,
    CharacterProfile,
    GenerationOptions,
    Panel,
    ProgressEvent,
    ReferenceSet,
    Scene,
)

log = get_logger(__name__)

ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

# -------------------------------------------------------------------
# Reference / model selection shared with revisions
# -------------------------------------------------------------------

def select_scene_references(
    characters: Sequence[str],
    angle: CameraAngle,
    ref_sets: Mapping[str, ReferenceSet],
    *,
    per_character: int = 4,
    cap: int = MAX_REFERENCE_IMAGES,
) -> List[str]:
    """
    Per character in scene order: the angle fallback chain, or the character's
    whole list when none of its images carry an angle tag. Then cap the total.
    """
    urls: List[str] = []
    for cid in characters:
        refs = ref_sets.get(cid)
        if refs is None or refs.is_empty:
            continue
        picked = select_references_for_angle(angle, refs.urls_by_angle, max_images=per_character)
        if not picked:
            picked = list(refs.all_urls[:per_character])
        urls.extend(picked)
    if len(urls) > cap:
        log.debug(f"capping {len(urls)} references at {cap}")
        urls = urls[:cap]
    return urls


def resolve_options(
    options: Optional[GenerationOptions],
    characters: Sequence[str],
    profiles: Mapping[str, CharacterProfile],
) -> GenerationOptions:
    """Model priority: request > first character's preferred model > client default."""
    opts = options or GenerationOptions()
    if opts.model:
        return opts
    first = profiles.get(characters[0]) if characters else None
    if first is not None and first.preferred_model:
        return opts.model_copy(update={"model": first.preferred_model})
    return opts

# -------------------------------------------------------------------
# Orchestrator
# -------------------------------------------------------------------

class PanelOrchestrator:
    def __init__(
        self,
        client: GenerationClient,
        resolver: ReferenceResolver,
        synthesizer: PromptSynthesizer,
        *,
        max_reference_images: int = MAX_REFERENCE_IMAGES,
        max_references_per_character: int = 4,
        default_background_color: str = "#e8dfd0",
    ):
        self.client = client
        self.resolver = resolver
        self.synthesizer = synthesizer
        self.max_reference_images = max_reference_images
        self.max_references_per_character = max_references_per_character
        self.default_background_color = default_background_color
        # scenes of rejected batches, kept referenced until their jobs end
        self._stragglers: Set[asyncio.Task] = set()

    async def generate_batch(
        self,
        scenes: Sequence[Scene],
        profiles: Mapping[str, CharacterProfile],
        on_progress: Optional[ProgressCallback] = None,
        options: Optional[GenerationOptions] = None,
        background_color: Optional[str] = None,
    ) -> List[Panel]:
        """
        Render one panel per scene, concurrently. Returns panels in scene order
        numbered 1..N, or raises BatchGenerationError for the first scene that
        failed; nothing partial is returned.
        """
        total = len(scenes)
        bg = background_color or self.default_background_color

        async def emit(index: int, status: BatchStatus, message: str, completed: int) -> None:
            if on_progress is None:
                return
            event = ProgressEvent(current_panel_index=index, total_panels=total, status=status,
                                  message=message, completed_count=completed)
            try:
                res = on_progress(event)
                if inspect.isawaitable(res):
                    await res
            except Exception:
                log.exception("progress callback failed")

        if total == 0:
            await emit(0, "completed", "Nothing to generate", 0)
            return []

        # 1) references: every distinct character once, before any prompt
        await emit(0, "generating_prompts", f"Preparing {total} panel prompt(s)", 0)
        character_ids = list(dict.fromkeys(c for s in scenes for c in s.characters))
        ref_sets = await BatchReferences(self.resolver, profiles).resolve_all(character_ids)

        # 2) prompts, concurrently; context is the previous scene's input
        detections: List[AngleDetection] = [classify(s.scene_description) for s in scenes]
        prompt_results = await asyncio.gather(
            *(
                self.synthesizer.build_panel_prompt(
                    scene,
                    scenes[i - 1] if i > 0 else None,
                    [profiles[c] for c in scene.characters if c in profiles],
                    detections[i],
                )
                for i, scene in enumerate(scenes)
            ),
            return_exceptions=True,
        )
        for i, res in enumerate(prompt_results):
            if isinstance(res, BaseException):
                log.error(f"prompt for scene {i + 1} failed: {res}")
                await emit(i, "failed", f"Prompt for panel {i + 1} failed: {res}", 0)
                raise BatchGenerationError(i, res) from res
        prompts: List[str] = list(prompt_results)

        # 3) images, concurrently; first failure ends the batch
        await emit(0, "generating_avatars", f"Generating {total} panel image(s)", 0)
        tasks: Dict[asyncio.Task, int] = {
            asyncio.ensure_future(
                self._render(i, scene, prompts[i], detections[i], ref_sets, profiles, options, bg)
            ): i
            for i, scene in enumerate(scenes)
        }
        panels: List[Optional[Panel]] = [None] * total
        completed = 0
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                ordered = sorted(done, key=tasks.__getitem__)
                for n, task in enumerate(ordered):
                    i = tasks[task]
                    exc = task.exception()
                    if exc is not None:
                        log.error(f"scene {i + 1}/{total} failed, batch rejected; {len(pending)} other(s) still running")
                        for other in [*ordered[n + 1:], *pending]:
                            self._let_finish(other, tasks[other], total)
                        await emit(i, "failed", f"Panel {i + 1} failed: {exc}", completed)
                        raise BatchGenerationError(i, exc) from exc
                    panels[i] = task.result()
                    completed += 1
                    log.info(f"scene {i + 1}/{total} done ({completed}/{total})")
                    await emit(i, "generating_avatars", f"Panel {i + 1} of {total} ready", completed)
        except asyncio.CancelledError:
            # the caller went away; nobody is left to collect these
            for task in pending:
                task.cancel()
            raise

        await emit(total - 1, "completed", f"All {total} panels generated", completed)
        return [p for p in panels if p is not None]

    def _let_finish(self, task: asyncio.Task, index: int, total: int) -> None:
        """Keep a scene of a rejected batch running until its job ends or times out; log how it ended."""
        self._stragglers.add(task)

        def _done(t: asyncio.Task) -> None:
            self._stragglers.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                log.warning(f"scene {index + 1}/{total} of a rejected batch failed too: {exc}")
            else:
                log.info(f"scene {index + 1}/{total} of a rejected batch finished; result discarded")

        task.add_done_callback(_done)

    async def drain(self, cancel: bool = False) -> None:
        """Wait for scenes of rejected batches that are still running, or cancel them."""
        stragglers = list(self._stragglers)
        if cancel:
            for task in stragglers:
                task.cancel()
        if stragglers:
            await asyncio.gather(*stragglers, return_exceptions=True)

    async def _render(
        self,
        index: int,
        scene: Scene,
        prompt: str,
        detection: AngleDetection,
        ref_sets: Mapping[str, ReferenceSet],
        profiles: Mapping[str, CharacterProfile],
        options: Optional[GenerationOptions],
        background_color: str,
    ) -> Panel:
        refs = select_scene_references(
            scene.characters,
            detection.angle,
            ref_sets,
            per_character=self.max_references_per_character,
            cap=self.max_reference_images,
        )
        opts = resolve_options(options, scene.characters, profiles)
        log.debug(f"scene {index + 1}: angle={detection.angle.value} refs={len(refs)} model={opts.model}")
        image = await self.client.generate(prompt, refs, opts)
        return Panel(
            panel_number=index + 1,
            panel_text=scene.text,
            scene_description=scene.scene_description,
            image_data=image.data_url,
            image_prompt=prompt,
            background_color=background_color,
            image_url=image.url,
            characters=list(scene.characters),
        )
