"""
Prompt templates for every generation call.

Templates use ``{NAME}`` placeholders filled by render(); plain str.replace is used
so JSON examples inside the templates can keep their braces.
"""

from typing import Iterable, Optional


def render(template: str, **values) -> str:
    for key, value in values.items():
        template = template.replace("{" + key.upper() + "}", "" if value is None else str(value))
    return template


def bullet_list(lines: Iterable[str]) -> str:
    lines = [line for line in lines if line]
    if not lines:
        return "- None"
    return "\n".join(f"- {line}" for line in lines)


def or_not_provided(text: Optional[str]) -> str:
    return text.strip() if text and text.strip() else "(Not provided)"


# ---------- Stitching ----------

STITCH_PROMPT = """You are helping someone tell a story out loud. They recorded it in several segments.

Instructions from the storyteller:
{PROMPT}

Recorded segments, in order:
{SEGMENTS}

Tasks:
1. Detect the dominant language of the instructions and segments.{LANGUAGE_RULE}
2. Write one cohesive narrative in that language that joins the segments, keeping their events and order.
3. Translate that narrative into natural English.
4. Optionally describe the story with metadata tags (mood, tone, palette, genre, setting, era, lighting, themes) and suggest a short English title ("title_short") of at most 8 words.

Respond with a JSON object:
{"language": "...", "story_original": "...", "story_english": "...", "title_short": "...", "metadata": {"mood": "...", "palette": ["..."]}}"""

FORCED_LANGUAGE_RULE = " Write the narrative in {LANGUAGE} regardless of what you detect, and report {LANGUAGE} as the language."


# ---------- Asset Extraction ----------

LANGUAGE_HINT_TRANSLATE = (
    "The original story language is {LANGUAGE}. Translate names and descriptions into natural "
    "English while preserving culturally specific details."
)
LANGUAGE_HINT_ENGLISH = "Ensure every name and description you output is written in clear, natural English."

CHARACTER_PROMPT = """Identify the characters of the following story.
Return at most {LIMIT} characters, the most important first. Merge mentions of the same character into one entry.
For each character give a "name" and a "description" focused on visual appearance (age, build, clothing, distinctive features) so an illustrator could draw them consistently.
{LANGUAGE_HINT}
Respond with a JSON array of objects with "name" and "description".

Story:
{STORY}"""

ENVIRONMENT_PROMPT = """Identify the distinct environments (places) where the following story takes place.
Return at most {LIMIT} environments. Treat repeated visits to the same place as one environment.
For each environment give a "name" and a "description" focused on what it looks like (layout, materials, lighting, atmosphere).
{LANGUAGE_HINT}
Respond with a JSON array of objects with "name" and "description".

Story:
{STORY}"""

SCENE_ENVIRONMENT_PROMPT = """Describe the single environment where the following scene takes place.
{LANGUAGE_HINT}
{PREVIOUS_HINT}
{SUGGESTION_HINT}

Characters in the scene:
{CHARACTERS}

Scene caption (original language):
{CAPTION_ORIGINAL}

Scene caption (English):
{CAPTION_ENGLISH}

Respond with a JSON array containing one object with "name" and "description"."""

PREVIOUS_ENVIRONMENT_HINT = (
    'The previous scene took place in "{NAME}". Only reuse that location if the narrative clearly '
    "remains there; otherwise choose a distinct setting."
)
NO_PREVIOUS_ENVIRONMENT_HINT = "There is no previous scene to reference."
SUGGESTED_ENVIRONMENT_HINT = "Suggested environment from the scene builder: {NAME}"
NO_SUGGESTED_ENVIRONMENT_HINT = "No suggested environment name was provided."


# ---------- Scenes ----------

SCENES_PROMPT = """Given the following story, split it into coherent scenes.
Each scene is one visual moment that could be illustrated with a single picture. Keep narrative order.
Use only the English names exactly as provided in the reference lists below for "environment_name" and "character_names".
{CAPTION_RULE}

Characters:
{CHARACTERS}

Environments:
{ENVIRONMENTS}

{STORY_BLOCKS}

Respond with a JSON array of objects with "caption_original", "caption_english", "environment_name" and "character_names"."""

CAPTION_RULE_BOTH = (
    'Write "caption_original" in the language of the original story and "caption_english" in English.'
)
CAPTION_RULE_ENGLISH_ONLY = (
    'Only an English version of the story is available: write "caption_english" and repeat the same text as "caption_original".'
)
CAPTION_RULE_ORIGINAL_ONLY = (
    'Only the original story is available: write "caption_original" in its language and translate it into English for "caption_english".'
)


# ---------- Localization ----------

LOCALIZE_ASSETS_PROMPT = """Translate the names and descriptions of the following story elements into {LANGUAGE}.
Keep each "id" unchanged. Proper names that should not be translated may stay as they are.

Items:
{ITEMS}

Respond with a JSON array of objects with "id", "name" and "description"."""

LOCALIZE_TITLE_PROMPT = """Translate this story title into {LANGUAGE}. Keep it short and natural.

Title: {TITLE}

Respond with a JSON object with a single "title" field."""


# ---------- Images ----------

CHARACTER_IMAGE_PROMPT = """Create a {STYLE} full-body character portrait on a simple background.
Character: {DESCRIPTION}"""

ENVIRONMENT_IMAGE_PROMPT = """Create a {STYLE} wide establishing image of a location, with no people in it.
Location: {DESCRIPTION}"""

SCENE_IMAGE_PROMPT = """Create a {STYLE} illustration of the following story scene.
{DESCRIPTION}"""
