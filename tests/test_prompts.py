# tests/test_prompts.py
import dataclasses

import pytest

from panelgen.config import load_config
from panelgen.features.prompts.service import (
    FIRST_PANEL_CONTEXT,
    OpenAIPromptSynthesizer,
    TemplatePromptSynthesizer,
    describe_characters,
    make_prompt_synthesizer,
)
from panelgen.lib.angles import classify
from panelgen.schemas import Panel, Scene


# -------- Mocks for OpenAI --------
class _MockMessage:
    def __init__(self, content: str):
        self.content = content

class _MockChoice:
    def __init__(self, content: str):
        self.message = _MockMessage(content)

class _MockChatResponse:
    def __init__(self, content: str):
        self.choices = [_MockChoice(content)]

class _MockCompletions:
    def __init__(self, reply: str):
        self.reply = reply
        self.calls = []

    async def create(self, model, temperature, messages, **kwargs):
        self.calls.append({"model": model, "temperature": temperature, "messages": messages})
        return _MockChatResponse(self.reply)

class _MockAsyncOpenAI:
    def __init__(self, reply: str):
        self.chat = type("Chat", (), {})()
        self.chat.completions = _MockCompletions(reply)


SCENE = Scene(text="Atme tief", scene="Theresa sits cross-legged, looking at viewer.", characters=["theresa"])


@pytest.mark.asyncio
async def test_template_prompt_contains_all_parts(profiles):
    prompt = await TemplatePromptSynthesizer().build_panel_prompt(
        SCENE, None, [profiles["theresa"]], classify(SCENE.scene_description)
    )
    assert SCENE.scene_description in prompt
    assert "CAMERA ANGLE: Character faces directly toward camera. Front view." in prompt
    assert "CHARACTER 1 - Theresa: Woman in early 40s" in prompt
    assert '"Atme tief"' in prompt
    assert FIRST_PANEL_CONTEXT in prompt


@pytest.mark.asyncio
async def test_template_prompt_is_deterministic(profiles):
    synth = TemplatePromptSynthesizer()
    det = classify(SCENE.scene_description)
    a = await synth.build_panel_prompt(SCENE, None, [profiles["theresa"]], det)
    b = await synth.build_panel_prompt(SCENE, None, [profiles["theresa"]], det)
    assert a == b


def test_describe_characters_without_descriptions():
    assert describe_characters([]) == "No character descriptions available."


@pytest.mark.asyncio
async def test_openai_synthesizer_rewrites_draft(profiles):
    client = _MockAsyncOpenAI("  Comic panel: Theresa meditating, front view.  ")
    synth = OpenAIPromptSynthesizer(client, model="gpt-4o-mini")
    prompt = await synth.build_panel_prompt(SCENE, None, [profiles["theresa"]], classify(SCENE.scene_description))

    assert prompt == "Comic panel: Theresa meditating, front view."
    call = client.chat.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert "CAMERA ANGLE" in call["messages"][1]["content"]


@pytest.mark.asyncio
async def test_openai_edit_instruction_uses_feedback():
    client = _MockAsyncOpenAI("Keep same composition and style as input image. Change text from 'blank' to 'leer'.")
    synth = OpenAIPromptSynthesizer(client)
    panel = Panel(panel_number=1, panel_text="blank", scene_description="x", image_data="data:image/png;base64,AA")
    out = await synth.build_edit_instruction(panel, "Text soll 'leer' heißen")
    assert out.startswith("Keep same composition")
    assert "Text soll 'leer' heißen" in client.chat.completions.calls[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_openai_empty_completion_raises(profiles):
    synth = OpenAIPromptSynthesizer(_MockAsyncOpenAI("   "))
    with pytest.raises(ValueError):
        await synth.build_panel_prompt(SCENE, None, [], classify(SCENE.scene_description))


def test_make_prompt_synthesizer_selection():
    cfg = load_config()
    assert isinstance(
        make_prompt_synthesizer(dataclasses.replace(cfg, openai_api_key="", prompt_synthesizer="openai")),
        TemplatePromptSynthesizer,
    )
    assert isinstance(
        make_prompt_synthesizer(dataclasses.replace(cfg, openai_api_key="sk", prompt_synthesizer="template")),
        TemplatePromptSynthesizer,
    )
    synth = make_prompt_synthesizer(
        dataclasses.replace(cfg, openai_api_key="sk", prompt_synthesizer="openai"),
        openai_client=_MockAsyncOpenAI("x"),
    )
    assert isinstance(synth, OpenAIPromptSynthesizer)
