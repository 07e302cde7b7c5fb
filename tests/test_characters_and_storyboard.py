# tests/test_characters_and_storyboard.py
import json

import pytest

from panelgen.features.characters.registry import CharacterRegistry, DEFAULT_PROFILES
from panelgen.lib.errors import UnknownCharacterError
from panelgen.lib.json_tools import extract_json_block, parse_storyboard
from panelgen.schemas import Scene


def test_default_registry_has_theresa_and_ben():
    reg = CharacterRegistry(DEFAULT_PROFILES)
    assert len(reg) == 2
    assert reg.get("Theresa").display_name == "Theresa"
    assert "BEN" in reg
    assert reg.get("nobody") is None


def test_require_lists_missing_ids():
    reg = CharacterRegistry(DEFAULT_PROFILES)
    assert set(reg.require(["theresa", "Ben"])) == {"theresa", "ben"}
    with pytest.raises(UnknownCharacterError) as ei:
        reg.require(["theresa", "zed", "amy"])
    assert ei.value.character_ids == ["amy", "zed"]


def test_registry_from_file(tmp_path):
    path = tmp_path / "characters.json"
    path.write_text(json.dumps({"characters": [
        {"id": "Mia", "display_name": "Mia", "physical_description": "Teenager with red hair.",
         "reference_image_paths": ["mia_frontal.jpg"]},
    ]}))
    reg = CharacterRegistry.from_file(path)
    assert reg.get("mia").reference_image_paths == ["mia_frontal.jpg"]


def test_scene_characters_are_normalized_and_deduplicated():
    scene = Scene(text="", scene="x", characters=["Ben", " theresa", "ben", ""])
    assert scene.characters == ["ben", "theresa"]


def test_scene_without_characters_uses_default():
    assert Scene(scene="x").characters == ["theresa"]
    assert Scene(scene="x", characters=[]).characters == ["theresa"]


def test_scene_is_immutable():
    scene = Scene(scene="x")
    with pytest.raises(Exception):
        scene.text = "changed"


def test_extract_json_block_strips_fences_and_chatter():
    assert json.loads(extract_json_block('```json\n[{"a": 1}]\n```')) == [{"a": 1}]
    assert json.loads(extract_json_block('Here you go: [{"a": 1}] enjoy')) == [{"a": 1}]


def test_parse_storyboard():
    text = """```json
    [
      {"text": "Hallo", "scene": "Theresa at her desk", "characters": ["Theresa"]},
      {"text": "", "scene": "Ben enters"}
    ]
    ```"""
    scenes = parse_storyboard(text)
    assert [s.scene_description for s in scenes] == ["Theresa at her desk", "Ben enters"]
    assert scenes[0].characters == ["theresa"]


def test_parse_storyboard_object_with_panels():
    scenes = parse_storyboard(json.dumps({"panels": [{"text": "a", "scene": "b"}]}))
    assert len(scenes) == 1


def test_parse_storyboard_rejects_empty():
    with pytest.raises(ValueError):
        parse_storyboard("[]")
