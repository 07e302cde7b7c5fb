# tests/conftest.py
import dataclasses
import io
import json
from typing import Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from panelgen.config import load_config
from panelgen.features.characters.registry import CharacterRegistry
from panelgen.features.panels.service import PanelOrchestrator
from panelgen.features.prompts.service import TemplatePromptSynthesizer
from panelgen.features.references.service import ReferenceResolver
from panelgen.features.revisions.service import RevisionController
from panelgen.lib.errors import TransportError
from panelgen.lib.generation_client import GenerationClient
from panelgen.lib.imaging import content_hash
from panelgen.schemas import CharacterProfile

API_BASE = "https://api.test/api/v1/jobs"
CDN_HOST = "cdn.test"

# -------- Utilities --------
def tiny_png(color=(123, 45, 67), size=(8, 8)) -> bytes:
    im = Image.new("RGB", size, color)
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()

RESULT_PNG = tiny_png((10, 200, 30))

def hosted_url(data: bytes) -> str:
    return f"https://img.test/{content_hash(data)[:12]}.png"

# -------- Fake image host --------
class FakeImageHost:
    """Records uploads; URLs are derived from the content so tests can predict them."""
    url_ttl = None

    def __init__(self):
        self.uploads: List[List[bytes]] = []
        self.fail = False

    async def upload_many(self, images):
        if self.fail:
            raise TransportError("host down")
        self.uploads.append([data for data, _ in images])
        return [hosted_url(data) for data, _ in images]

    @property
    def uploaded(self) -> List[bytes]:
        return [d for batch in self.uploads for d in batch]

# -------- Fake provider (jobs API + result CDN) --------
class FakeProvider:
    """
    In-memory jobs API. Each job walks through a list of states, one per poll;
    the last state repeats forever. Jobs whose prompt contains a scripted
    marker follow that script, the rest follow `default_states`.
    """

    def __init__(self):
        self.default_states = ["waiting", "generating", "success"]
        self.scripts: Dict[str, dict] = {}
        self.submissions: List[dict] = []
        self.jobs: Dict[str, dict] = {}

    def script(self, marker: str, states: List[str], fail_msg: Optional[str] = None) -> None:
        self.scripts[marker] = {"states": states, "fail_msg": fail_msg}

    def polls(self, task_id: str) -> int:
        return self.jobs[task_id]["polls"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.url.host == CDN_HOST:
            return httpx.Response(200, content=RESULT_PNG, headers={"content-type": "image/png"})

        if path.endswith("/createTask"):
            body = json.loads(request.content)
            self.submissions.append(body)
            # markers are matched before the previous-panel context, which repeats the prior scene
            prompt = body["input"]["prompt"].split("PREVIOUS PANEL")[0]
            job = {"states": self.default_states, "fail_msg": None, "polls": 0}
            for marker, script in self.scripts.items():
                if marker in prompt:
                    job.update(states=script["states"], fail_msg=script["fail_msg"])
                    break
            task_id = f"task-{len(self.submissions)}"
            self.jobs[task_id] = job
            return httpx.Response(200, json={"code": 200, "msg": "success", "data": {"taskId": task_id}})

        if path.endswith("/recordInfo"):
            task_id = request.url.params["taskId"]
            job = self.jobs[task_id]
            state = job["states"][min(job["polls"], len(job["states"]) - 1)]
            job["polls"] += 1
            data = {"taskId": task_id, "state": state}
            if state == "success":
                data["resultJson"] = json.dumps({"resultUrls": [f"https://{CDN_HOST}/{task_id}.png"]})
            if state in ("fail", "failed"):
                data["failMsg"] = job["fail_msg"]
            return httpx.Response(200, json={"code": 200, "msg": "success", "data": data})

        return httpx.Response(404, json={"code": 404, "msg": "not found"})

# -------- Fixtures --------
@pytest.fixture
def provider():
    return FakeProvider()

@pytest.fixture
def http(provider):
    return httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))

@pytest.fixture
def gen_client(http):
    return GenerationClient(
        api_key="test-key",
        base_url=API_BASE,
        http=http,
        poll_interval=0,
        job_timeout=5,
        fetch_retry_delay=0,
    )

@pytest.fixture
def host():
    return FakeImageHost()

@pytest.fixture
def ref_dir(tmp_path):
    d = tmp_path / "refs"
    d.mkdir()
    (d / "theresa_frontal.png").write_bytes(tiny_png((200, 180, 150)))
    (d / "theresa_three_quarter_left.png").write_bytes(tiny_png((190, 170, 140)))
    (d / "ben_frontal.png").write_bytes(tiny_png((60, 40, 20)))
    return d

@pytest.fixture
def profiles(ref_dir):
    return {
        "theresa": CharacterProfile(
            id="theresa",
            display_name="Theresa",
            physical_description="Woman in early 40s with round black glasses.",
            reference_image_paths=["theresa_frontal.png", "theresa_three_quarter_left.png"],
            preferred_model="nano-banana-pro",
        ),
        "ben": CharacterProfile(
            id="ben",
            display_name="Ben",
            physical_description="Man in mid 30s, short dark brown hair.",
            reference_image_paths=["ben_frontal.png"],
        ),
    }

@pytest.fixture
def resolver(host, ref_dir):
    return ReferenceResolver(host, reference_dir=ref_dir)

@pytest.fixture
def synthesizer():
    return TemplatePromptSynthesizer()

@pytest.fixture
def orchestrator(gen_client, resolver, synthesizer):
    return PanelOrchestrator(gen_client, resolver, synthesizer)

@pytest.fixture
def revisions(gen_client, resolver, synthesizer):
    return RevisionController(gen_client, resolver, synthesizer)

@pytest.fixture
def test_config(ref_dir):
    return dataclasses.replace(
        load_config(),
        kie_api_key="test-key",
        kie_base_url=API_BASE,
        poll_interval_seconds=0,
        job_timeout_seconds=5,
        prompt_synthesizer="template",
        reference_image_dir=ref_dir,
        characters_file="",
    )

@pytest.fixture
def client(test_config, http, host, profiles):
    from panelgen.main import app
    from panelgen.services import build_services

    app.state.services = build_services(
        test_config,
        http=http,
        host=host,
        registry=CharacterRegistry(profiles.values()),
        synthesizer=TemplatePromptSynthesizer(),
    )
    with TestClient(app) as c:
        yield c
    app.state.services = None
