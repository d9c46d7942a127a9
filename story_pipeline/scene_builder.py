"""
Scene building: splits the narrative into ordered scenes with bilingual captions and
references into the extracted characters and environments.
"""

from __future__ import annotations

from typing import Any, List, Optional
from pydantic import Field, TypeAdapter

from openrouter_wrapper import structured_llm

from .artifact import CharacterAsset, EnvironmentAsset, Scene, StoryAsset, StrictModel, find_matching, names_match
from .config import PipelineConfig
from .prompts import (
    SCENES_PROMPT,
    CAPTION_RULE_BOTH,
    CAPTION_RULE_ENGLISH_ONLY,
    CAPTION_RULE_ORIGINAL_ONLY,
    bullet_list,
    render,
)


class SceneItem(StrictModel):
    caption_original: str = Field(..., description="Scene caption in the original story language.")
    caption_english: str = Field(..., description="Scene caption in English.")
    environment_name: Optional[str] = Field(None, description="English name of the environment, from the reference list.")
    character_names: List[str] = Field(default_factory=list, description="English names of the characters present.")


SCENES_SCHEMA = TypeAdapter(List[SceneItem]).json_schema()


def reference_line(asset: StoryAsset) -> str:
    """`EnglishName: EnglishDescription (Original name: X)`; the suffix only when it differs."""
    line = f"{asset.english_name}: {asset.english_description}"
    if asset.name and not names_match(asset.name, asset.english_name):
        line += f" (Original name: {asset.name})"
    return line


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_scenes(
    raw: Optional[List[Any]],
    characters: List[CharacterAsset],
    environments: List[EnvironmentAsset],
    tag: str = "SceneBuilder",
) -> List[Scene]:
    """Resolve decoded scene objects against the reference lists.

    Unknown environment or character names are dropped; the scene keeps the raw
    environment hint in environment_name either way. Scenes with no caption at all
    are skipped.
    """
    scenes: List[Scene] = []
    unmatched: List[str] = []

    for element in raw or []:
        if not isinstance(element, dict):
            continue
        caption_original = _text(element.get("caption_original")) or _text(element.get("text"))
        caption_english = _text(element.get("caption_english")) or caption_original
        caption_original = caption_original or caption_english
        if not caption_original:
            continue

        environment_name = _text(element.get("environment_name"))
        environment = find_matching(environments, environment_name)
        if environment_name and environment is None:
            unmatched.append(environment_name)

        character_ids: List[str] = []
        names = element.get("character_names")
        for name in names if isinstance(names, list) else []:
            character = find_matching(characters, name) if isinstance(name, str) else None
            if character is None:
                if isinstance(name, str) and name.strip():
                    unmatched.append(name.strip())
                continue
            if character.id not in character_ids:
                character_ids.append(character.id)

        scenes.append(Scene(
            caption_original=caption_original,
            caption_english=caption_english,
            environment_id=environment.id if environment else None,
            environment_name=environment_name,
            character_ids=character_ids,
        ))

    if unmatched:
        print(f"⚠️  {tag}: dropped unknown references -> {', '.join(unmatched)}")
    return scenes


def build_scenes(
    story_original: Optional[str],
    story_english: Optional[str],
    characters: List[CharacterAsset],
    environments: List[EnvironmentAsset],
    config: PipelineConfig,
    tag: str = "SceneBuilder",
) -> List[Scene]:
    """Split the story into scenes. Returns an empty list when there is no story or no result."""
    original = _text(story_original)
    english = _text(story_english)
    if not original and not english:
        print(f"⚠️  {tag}: no story text, skipping scene composition")
        return []

    if original and english:
        caption_rule = CAPTION_RULE_BOTH
    elif english:
        caption_rule = CAPTION_RULE_ENGLISH_ONLY
    else:
        caption_rule = CAPTION_RULE_ORIGINAL_ONLY

    blocks = []
    if original:
        blocks.append(f"Original story:\n{original}")
    if english:
        blocks.append(f"English translation:\n{english}")

    prompt = render(
        SCENES_PROMPT,
        caption_rule=caption_rule,
        characters=bullet_list(reference_line(c) for c in characters),
        environments=bullet_list(reference_line(e) for e in environments),
        story_blocks="\n\n".join(blocks),
    )

    raw = structured_llm(
        model=config.text_model,
        text=prompt,
        schema_name="scenes",
        schema=SCENES_SCHEMA,
        expect="array",
        use_structured_outputs=config.use_structured_outputs,
        tag=tag,
        **config.llm_kwargs(),
    )
    scenes = parse_scenes(raw, characters, environments, tag=tag)
    print(f"🎬 {tag}: {len(scenes)} scenes")
    return scenes
