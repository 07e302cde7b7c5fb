# panelgen/services.py
"""Explicitly constructed clients shared by the routers. Owned by the app lifespan."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from openai import AsyncOpenAI

from panelgen.config import Config
from panelgen.features.characters.registry import CharacterRegistry
from panelgen.features.panels.service import PanelOrchestrator
from panelgen.features.panels.store import BatchStore
from panelgen.features.prompts.service import PromptSynthesizer, make_prompt_synthesizer
from panelgen.features.references.service import ReferenceResolver
from panelgen.features.revisions.service import RevisionController
from panelgen.lib.generation_client import GenerationClient
from panelgen.lib.image_host import ImageHost, make_image_host
from panelgen.logger import get_logger

log = get_logger(__name__)


@dataclass
class Services:
    config: Config
    http: httpx.AsyncClient
    registry: CharacterRegistry
    client: GenerationClient
    resolver: ReferenceResolver
    synthesizer: PromptSynthesizer
    orchestrator: PanelOrchestrator
    revisions: RevisionController
    batches: BatchStore

    async def aclose(self) -> None:
        await self.orchestrator.drain(cancel=True)
        await self.client.aclose()
        await self.http.aclose()


def build_services(
    cfg: Config,
    *,
    http: Optional[httpx.AsyncClient] = None,
    host: Optional[ImageHost] = None,
    registry: Optional[CharacterRegistry] = None,
    synthesizer: Optional[PromptSynthesizer] = None,
    openai_client: Optional[AsyncOpenAI] = None,
) -> Services:
    http = http or httpx.AsyncClient(timeout=cfg.http_timeout_seconds)
    client = GenerationClient.from_config(cfg, http)
    resolver = ReferenceResolver(
        host or make_image_host(cfg, http),
        reference_dir=cfg.reference_image_dir,
        max_side=cfg.reference_max_side,
    )
    synthesizer = synthesizer or make_prompt_synthesizer(cfg, openai_client)
    limits = dict(
        max_reference_images=client.max_reference_images,
        max_references_per_character=cfg.max_references_per_character,
    )
    log.info(f"services ready: model={cfg.image_model} host={cfg.image_host} synthesizer={type(synthesizer).__name__}")
    return Services(
        config=cfg,
        http=http,
        registry=registry or CharacterRegistry.from_config(cfg),
        client=client,
        resolver=resolver,
        synthesizer=synthesizer,
        orchestrator=PanelOrchestrator(
            client, resolver, synthesizer, default_background_color=cfg.default_background_color, **limits
        ),
        revisions=RevisionController(client, resolver, synthesizer, **limits),
        batches=BatchStore(ttl_hours=cfg.batch_ttl_hours),
    )
