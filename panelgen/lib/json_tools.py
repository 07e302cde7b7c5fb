# panelgen/lib/json_tools.py
import json
import re
from typing import List

from panelgen.schemas import Scene

def extract_json_block(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        s = re.sub(r"^```(?:json)?\s*", "", s, flags=re.IGNORECASE)
        s = re.sub(r"\s*```$", "", s)
    try:
        json.loads(s)
        return s
    except ValueError:
        pass
    m = re.search(r"\[.*\]", s, flags=re.DOTALL)
    if m:
        return m.group(0)
    m = re.search(r"\{.*\}", s, flags=re.DOTALL)
    return m.group(0) if m else s

def parse_storyboard(text: str) -> List[Scene]:
    """
    Parse a storyboard as produced by the dialogue agent: a JSON array of
    {text, scene, characters?} objects, optionally fenced in ```json.
    An object with a "panels" or "scenes" list is accepted too.
    """
    data = json.loads(extract_json_block(text))
    if isinstance(data, dict):
        data = data.get("panels") or data.get("scenes") or []
    if not isinstance(data, list) or not data:
        raise ValueError("storyboard must be a non-empty JSON array of scenes")
    return [Scene.model_validate(item) for item in data]
