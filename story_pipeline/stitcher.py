"""
Story stitching: raw narrated segments into one narrative, its English translation,
mood/style tags and a short title.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from openrouter_wrapper import llm, decode_structured, first_message

from .artifact import StrictModel
from .config import PipelineConfig
from .prompts import STITCH_PROMPT, FORCED_LANGUAGE_RULE, render

METADATA_KEYS = (
    "mood", "tone", "palette", "color_palette", "colors", "genre", "style",
    "atmosphere", "setting", "era", "lighting", "themes", "tags",
)


class StitchOutput(StrictModel):
    language: str = Field(..., description="Dominant language of the story, in English (e.g. 'Italian').")
    story_original: str = Field(..., description="The cohesive narrative in the detected language.")
    story_english: str = Field(..., description="English translation of the narrative.")
    title_short: Optional[str] = Field(None, description="Short English title, at most 8 words.")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Mood, tone, palette, genre and similar tags.")


STORY_SCHEMA = StitchOutput.model_json_schema()


class StitchResult(BaseModel):
    language: Optional[str] = None
    story_original: Optional[str] = None
    story_english: Optional[str] = None
    title_short: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


def _label(key: str) -> str:
    return key.replace("_", " ").strip().title()


def _flatten(label: str, value: Any, out: List[str]) -> None:
    if value is None:
        return
    if isinstance(value, dict):
        for key, nested in value.items():
            _flatten(f"{label} {_label(str(key))}".strip(), nested, out)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _flatten(label, item, out)
    else:
        text = str(value).strip()
        if text:
            out.append(f"{label}: {text}" if label else text)


def flatten_metadata(data: Dict[str, Any]) -> List[str]:
    """Walk known metadata keys into "Label: value" strings, deduplicated in order.

    Keys are looked up in a nested "metadata" object first and then at the top level.
    """
    sources = []
    if isinstance(data.get("metadata"), dict):
        sources.append(data["metadata"])
    sources.append(data)

    tags: List[str] = []
    for source in sources:
        for key in METADATA_KEYS:
            if key in source:
                _flatten(_label(key), source[key], tags)

    seen = set()
    unique = []
    for tag in tags:
        marker = tag.casefold()
        if marker not in seen:
            seen.add(marker)
            unique.append(tag)
    return unique


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_stitch_response(content: Optional[str], decoded: Optional[Dict[str, Any]] = None) -> StitchResult:
    """Turn a stitch response into a StitchResult.

    Valid JSON yields language, both stories, title and tags. Anything else is taken
    as the story text itself and used for both versions. Each story is seeded from
    the other, so both end up blank or both non-blank.
    """
    data = decoded
    if data is None and content and content.strip():
        try:
            parsed = json.loads(content)
        except ValueError:
            parsed = None
        data = parsed if isinstance(parsed, dict) else None

    if data is None:
        text = _clean(content)
        return StitchResult(story_original=text, story_english=text)

    original = _clean(data.get("story_original")) or _clean(data.get("story"))
    english = _clean(data.get("story_english"))
    return StitchResult(
        language=_clean(data.get("language")),
        story_original=original or english,
        story_english=english or original,
        title_short=_clean(data.get("title_short")) or _clean(data.get("title")),
        tags=flatten_metadata(data),
    )


def stitch_story(
    prompt: str,
    segments: List[str],
    config: PipelineConfig,
    tag: str = "StoryStitcher",
) -> Optional[StitchResult]:
    """Ask the text model to join the segments. Returns None when the call failed."""
    segment_lines = "\n".join(f"- {segment}" for segment in segments) or "- (no segments)"
    language_rule = render(FORCED_LANGUAGE_RULE, language=config.forced_language) if config.forced_language else ""
    text = render(
        STITCH_PROMPT,
        prompt=prompt.strip() or "(none)",
        segments=segment_lines,
        language_rule=language_rule,
    )

    content, full_response, _ = llm(
        model=config.text_model,
        text=text,
        schema=STORY_SCHEMA if config.use_structured_outputs else None,
        schema_name="story",
        tag=tag,
        **config.llm_kwargs(),
    )
    if full_response is None:
        return None
    if first_message(full_response) is None:
        print(f"⚠️  {tag}: response has no choices")
        return None

    # plain-text stories are expected here, parse_stitch_response falls back to content
    decoded = decode_structured(full_response, expect="object", tag=tag, logging=False)
    result = parse_stitch_response(content, decoded)
    if config.forced_language:
        result.language = config.forced_language
    return result
