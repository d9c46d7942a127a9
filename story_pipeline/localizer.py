"""
Localization of English-canonical assets and titles into the story's language.

One request is issued per batch of assets, never per item.
"""

from __future__ import annotations

import json
from typing import Dict, List, Optional, TypeVar
from pydantic import TypeAdapter

from openrouter_wrapper import structured_llm

from .artifact import StoryAsset, StrictModel
from .config import PipelineConfig
from .prompts import LOCALIZE_ASSETS_PROMPT, LOCALIZE_TITLE_PROMPT, render

AssetT = TypeVar("AssetT", bound=StoryAsset)


class LocalizedItem(StrictModel):
    id: str
    name: str
    description: str


class LocalizedTitle(StrictModel):
    title: str


LOCALIZED_ASSETS_SCHEMA = TypeAdapter(List[LocalizedItem]).json_schema()
LOCALIZED_TITLE_SCHEMA = LocalizedTitle.model_json_schema()


def should_localize(language: Optional[str]) -> bool:
    """False for a blank language, "english", or anything starting with an "en" code."""
    if language is None:
        return False
    normalized = language.strip().lower()
    if not normalized or normalized == "english":
        return False
    return not normalized.startswith("en")


def _decode_items(raw) -> Dict[str, LocalizedItem]:
    items = {}
    for entry in raw or []:
        if not isinstance(entry, dict):
            continue
        item_id = str(entry.get("id") or "").strip()
        name = entry.get("name")
        if not item_id or not isinstance(name, str) or not name.strip():
            continue
        description = entry.get("description")
        items[item_id] = LocalizedItem(
            id=item_id,
            name=name.strip(),
            description=description.strip() if isinstance(description, str) else "",
        )
    return items


def localize_assets(
    assets: List[AssetT],
    language: Optional[str],
    config: PipelineConfig,
    asset_type: str = "asset",
    tag: str = "StoryAssetLocalizer",
) -> List[AssetT]:
    """Translate names/descriptions of assets into language.

    Returned assets are copies (ids preserved) carrying name_english/description_english.
    Items the model did not return keep their English text. When localization is not
    needed, or the call yields nothing, the input list is returned untouched.
    """
    if not assets or not should_localize(language):
        return assets

    lines = []
    for i, asset in enumerate(assets):
        lines.append(
            f'{{"id": "{asset_type}_{i}", "name": {json.dumps(asset.english_name, ensure_ascii=False)}, '
            f'"description": {json.dumps(asset.english_description, ensure_ascii=False)}}}'
        )
    prompt = render(LOCALIZE_ASSETS_PROMPT, language=language, items="\n".join(lines))

    raw = structured_llm(
        model=config.text_model,
        text=prompt,
        schema_name="localized_assets",
        schema=LOCALIZED_ASSETS_SCHEMA,
        expect="array",
        use_structured_outputs=config.use_structured_outputs,
        tag=tag,
        **config.llm_kwargs(),
    )
    items = _decode_items(raw)
    if not items:
        print(f"⚠️  {tag}: no localized {asset_type} entries returned, keeping English text")
        return assets

    localized = []
    for i, asset in enumerate(assets):
        english_name = asset.english_name
        english_description = asset.english_description
        item = items.get(f"{asset_type}_{i}")
        name = item.name if item else english_name
        description = item.description if item and item.description else english_description
        localized.append(asset.model_copy(update={
            "name": name,
            "description": description,
            "name_english": english_name,
            "description_english": english_description,
        }))

    print(f"✅ {tag}: localized {len(items)}/{len(assets)} {asset_type} entries into {language}")
    return localized


def localize_title(
    title_english: Optional[str],
    language: Optional[str],
    config: PipelineConfig,
    tag: str = "StoryTitleLocalizer",
) -> Optional[str]:
    """Translate a title; falls back to the English title on any failure."""
    if not title_english or not title_english.strip():
        return title_english
    if not should_localize(language):
        return title_english

    raw = structured_llm(
        model=config.text_model,
        text=render(LOCALIZE_TITLE_PROMPT, language=language, title=title_english),
        schema_name="localized_title",
        schema=LOCALIZED_TITLE_SCHEMA,
        expect="object",
        use_structured_outputs=config.use_structured_outputs,
        tag=tag,
        **config.llm_kwargs(),
    )
    title = raw.get("title") if isinstance(raw, dict) else None
    if isinstance(title, str) and title.strip():
        return title.strip()
    return title_english
