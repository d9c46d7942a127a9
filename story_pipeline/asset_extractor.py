"""
Asset extraction: characters and environments from the English narrative, plus the
per-scene environment candidate used by the continuity resolver.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, TypeVar
from pydantic import Field, TypeAdapter

from openrouter_wrapper import structured_llm

from .artifact import CharacterAsset, EnvironmentAsset, StoryAsset, StrictModel
from .config import PipelineConfig
from .localizer import should_localize
from .prompts import (
    CHARACTER_PROMPT,
    ENVIRONMENT_PROMPT,
    SCENE_ENVIRONMENT_PROMPT,
    LANGUAGE_HINT_TRANSLATE,
    LANGUAGE_HINT_ENGLISH,
    PREVIOUS_ENVIRONMENT_HINT,
    NO_PREVIOUS_ENVIRONMENT_HINT,
    SUGGESTED_ENVIRONMENT_HINT,
    NO_SUGGESTED_ENVIRONMENT_HINT,
    bullet_list,
    or_not_provided,
    render,
)

CHARACTER_LIMIT = 12
ENVIRONMENT_LIMIT = 10

AssetT = TypeVar("AssetT", bound=StoryAsset)


class AssetItem(StrictModel):
    name: str = Field(..., description="Name in English.")
    description: str = Field(..., description="Visual description in English.")


ASSETS_SCHEMA = TypeAdapter(List[AssetItem]).json_schema()


def language_hint(language: Optional[str]) -> str:
    if should_localize(language):
        return render(LANGUAGE_HINT_TRANSLATE, language=language.strip())
    return LANGUAGE_HINT_ENGLISH


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


def validate_assets(
    raw: Optional[List[Any]],
    asset_type: str,
    factory: Callable[..., AssetT],
    tag: str = "StoryAssetExtractor",
) -> List[AssetT]:
    """Keep the well-formed elements of a decoded array.

    Every element must be an object with non-empty name and description. Offending
    elements are dropped and all problems are reported together in one line.
    Later duplicates of an already accepted name are dropped as well.
    """
    assets: List[AssetT] = []
    issues: List[str] = []

    for i, element in enumerate(raw or []):
        label = f"{asset_type}[{i}]"
        if not isinstance(element, dict):
            issues.append(f"{label}: expected object but was {_type_name(element)}")
            continue

        missing = [key for key in ("name", "description") if key not in element]
        if missing:
            issues.append(f"{label}: missing keys {', '.join(missing)}")
            continue

        name = element.get("name")
        description = element.get("description")
        problems = []
        if not isinstance(name, str) or not name.strip():
            problems.append('empty "name" value')
        if not isinstance(description, str) or not description.strip():
            problems.append('empty "description" value')
        if problems:
            issues.append(f"{label}: {', '.join(problems)}")
            continue

        if any(asset.matches(name) for asset in assets):
            issues.append(f"{label}: duplicate name \"{name.strip()}\"")
            continue

        assets.append(factory(name=name.strip(), description=description.strip()))

    if issues:
        print(f"⚠️  {tag}: {asset_type} validation issues -> {'; '.join(issues)}")

    return assets


def _extract(
    template: str,
    limit: int,
    asset_type: str,
    factory: Callable[..., AssetT],
    story_english: Optional[str],
    language: Optional[str],
    config: PipelineConfig,
    tag: str,
) -> List[AssetT]:
    if not story_english or not story_english.strip():
        print(f"⚠️  {tag}: no story text, skipping {asset_type} extraction")
        return []

    prompt = render(template, limit=limit, language_hint=language_hint(language), story=story_english.strip())
    raw = structured_llm(
        model=config.text_model,
        text=prompt,
        schema_name="assets",
        schema=ASSETS_SCHEMA,
        expect="array",
        use_structured_outputs=config.use_structured_outputs,
        tag=tag,
        **config.llm_kwargs(),
    )
    return validate_assets(raw, asset_type, factory, tag=tag)


def extract_characters(
    story_english: Optional[str],
    language: Optional[str],
    config: PipelineConfig,
    tag: str = "CharacterExtraction",
) -> List[CharacterAsset]:
    """Characters of the story, at most CHARACTER_LIMIT by instruction."""
    return _extract(CHARACTER_PROMPT, CHARACTER_LIMIT, "character", CharacterAsset,
                    story_english, language, config, tag)


def extract_environments(
    story_english: Optional[str],
    language: Optional[str],
    config: PipelineConfig,
    tag: str = "EnvironmentExtraction",
) -> List[EnvironmentAsset]:
    """Environments of the story, at most ENVIRONMENT_LIMIT by instruction."""
    return _extract(ENVIRONMENT_PROMPT, ENVIRONMENT_LIMIT, "environment", EnvironmentAsset,
                    story_english, language, config, tag)


def extract_environment_for_scene(
    caption_original: Optional[str],
    caption_english: Optional[str],
    suggested_name: Optional[str],
    previous: Optional[EnvironmentAsset],
    characters: List[CharacterAsset],
    language: Optional[str],
    config: PipelineConfig,
    tag: str = "SceneEnvironment",
) -> Optional[EnvironmentAsset]:
    """Candidate environment for one scene, or None.

    The previous scene's environment and the scene builder's suggestion are passed
    as hints only.
    """
    previous_hint = (
        render(PREVIOUS_ENVIRONMENT_HINT, name=previous.display_name) if previous
        else NO_PREVIOUS_ENVIRONMENT_HINT
    )
    suggestion_hint = (
        render(SUGGESTED_ENVIRONMENT_HINT, name=suggested_name.strip())
        if suggested_name and suggested_name.strip()
        else NO_SUGGESTED_ENVIRONMENT_HINT
    )
    prompt = render(
        SCENE_ENVIRONMENT_PROMPT,
        language_hint=language_hint(language),
        previous_hint=previous_hint,
        suggestion_hint=suggestion_hint,
        characters=bullet_list(f"{c.display_name}: {c.english_description}" for c in characters),
        caption_original=or_not_provided(caption_original),
        caption_english=or_not_provided(caption_english),
    )

    raw = structured_llm(
        model=config.text_model,
        text=prompt,
        schema_name="assets",
        schema=ASSETS_SCHEMA,
        expect="array",
        use_structured_outputs=config.use_structured_outputs,
        tag=tag,
        **config.llm_kwargs(),
    )
    candidates = validate_assets(raw, "environment", EnvironmentAsset, tag=tag)
    return candidates[0] if candidates else None
