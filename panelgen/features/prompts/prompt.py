# panelgen/features/prompts/prompt.py
def build_panel_prompt(
    *,
    panel_text: str,
    scene_description: str,
    angle_guidance: str,
    character_descriptions: str,
    previous_context: str,
) -> str:
    text_line = f'Speech bubble / caption text: "{panel_text}"' if panel_text.strip() else "No text in this panel."
    return f"""
Single comic panel illustration, warm therapeutic comic style with soft clean lines and gentle shading.

SCENE:
{scene_description.strip()}

CAMERA ANGLE: {angle_guidance}

CHARACTERS:
{character_descriptions}

TEXT:
{text_line}

PREVIOUS PANEL (for continuity only, do not redraw it):
{previous_context}

RULES:
- Match every character's face, hair, glasses and clothing to the reference images.
- Keep it an illustrated comic panel: NOT a photograph, NOT realistic, NOT a 3D render.
- Render the text exactly as given, spelled correctly, inside a clean speech bubble or caption box.
""".strip()


PROMPT_WRITER_SYSTEM = (
    "You write prompts for an image model that draws single comic panels. "
    "Return ONLY the final image prompt in English. No explanations, no markdown."
)

def build_prompt_writer_request(*, draft_prompt: str) -> str:
    return f"""
Rewrite the following panel brief into one precise image-generation prompt.
Keep the camera angle, the character descriptions and the exact panel text.
Be concrete about pose, expression, framing and lighting.

PANEL BRIEF:
{draft_prompt}
""".strip()


def build_edit_instruction(*, feedback: str, panel_text: str) -> str:
    return f"""
Keep same composition and style as input image. {feedback.strip()}
Keep every other part of the panel unchanged, including the text "{panel_text}" unless the feedback changes it.
Keep the characters consistent with the reference images.
Maintain the illustrated comic art style; NOT a photograph, NOT realistic.
""".strip()


EDIT_WRITER_SYSTEM = (
    "You turn user feedback about a comic panel (German or English) into a precise English "
    "edit instruction for an image-editing model. Return ONLY the instruction. No markdown."
)

def build_edit_writer_request(*, scene_description: str, panel_text: str, feedback: str) -> str:
    return f"""
CURRENT SCENE DESCRIPTION:
{scene_description}

CURRENT PANEL TEXT:
"{panel_text}"

USER FEEDBACK:
"{feedback}"

Write the edit instruction. Start with "Keep same composition and style as input image."
Implement exactly what the feedback asks and nothing else. If the feedback changes the
panel text, state the change as: Change text from '<old>' to '<new>'.
""".strip()
