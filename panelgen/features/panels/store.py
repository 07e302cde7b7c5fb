# panelgen/features/panels/store.py
"""In-process batch bookkeeping. Lost on restart."""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from panelgen.schemas import CharacterProfile, GenerationOptions, Panel, PanelRevisionCandidate, ProgressEvent, Scene

TERMINAL = {"completed", "failed"}


@dataclass
class BatchRecord:
    batch_id: str
    scenes: List[Scene]
    profiles: Dict[str, CharacterProfile]
    options: Optional[GenerationOptions] = None
    background_color: Optional[str] = None
    status: str = "queued"
    events: List[ProgressEvent] = field(default_factory=list)
    panels: List[Panel] = field(default_factory=list)
    error: Optional[str] = None
    failed_scene_index: Optional[int] = None
    candidates: Dict[int, PanelRevisionCandidate] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    task: Optional[asyncio.Task] = None

    def record_progress(self, event: ProgressEvent) -> None:
        self.events.append(event)
        self.status = event.status
        if event.status in TERMINAL:
            self.finished_at = time.time()

    def fail(self, error: str, scene_index: Optional[int] = None) -> None:
        self.error = error
        self.failed_scene_index = scene_index
        self.status = "failed"
        self.finished_at = self.finished_at or time.time()

    @property
    def done(self) -> bool:
        return self.status in TERMINAL

    @property
    def completed_count(self) -> int:
        return self.events[-1].completed_count if self.events else 0


class BatchStore:
    def __init__(self, ttl_hours: float = 24.0):
        self.ttl_hours = ttl_hours
        self._batches: Dict[str, BatchRecord] = {}

    def create(
        self,
        scenes: List[Scene],
        profiles: Dict[str, CharacterProfile],
        options: Optional[GenerationOptions] = None,
        background_color: Optional[str] = None,
    ) -> BatchRecord:
        self.sweep()
        rec = BatchRecord(
            batch_id=uuid.uuid4().hex,
            scenes=list(scenes),
            profiles=profiles,
            options=options,
            background_color=background_color,
        )
        self._batches[rec.batch_id] = rec
        return rec

    def get(self, batch_id: str) -> Optional[BatchRecord]:
        return self._batches.get(batch_id)

    def sweep(self) -> int:
        """Drop finished batches older than ttl_hours. Returns how many were removed."""
        now = time.time()
        stale = [
            bid for bid, rec in self._batches.items()
            if rec.done and rec.finished_at is not None and (now - rec.finished_at) / 3600.0 >= self.ttl_hours
        ]
        for bid in stale:
            del self._batches[bid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._batches)
