"""
Persisted story records.

Stories are stored as one JSON array. Asset fields use camelCase keys (nameEnglish,
descriptionEnglish) and scenes link to their environment and characters by display
name, so records stay readable on their own.
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .artifact import CharacterAsset, EnvironmentAsset, ProcessingContext, Scene, StoryAsset, find_matching


class StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class StoredAsset(StoredModel):
    name: str
    description: str
    name_english: Optional[str] = None
    description_english: Optional[str] = None
    image: Optional[str] = None


class StoredScene(StoredModel):
    caption_original: str
    caption_english: str
    environment: Optional[str] = None
    environment_name: Optional[str] = None
    characters: List[str] = Field(default_factory=list)
    image: Optional[str] = None


class StoryRecord(StoredModel):
    id: str
    title: str
    timestamp: int
    processed: bool = False
    error: Optional[str] = None
    prompt: str = ""
    segments: List[str] = Field(default_factory=list)
    segment_paths: List[str] = Field(default_factory=list)
    story_original: Optional[str] = None
    story_english: Optional[str] = None
    language: Optional[str] = None
    title_english: Optional[str] = None
    context_tags: List[str] = Field(default_factory=list)
    characters: List[StoredAsset] = Field(default_factory=list)
    environments: List[StoredAsset] = Field(default_factory=list)
    scenes: List[StoredScene] = Field(default_factory=list)


# ---------- Conversion ----------

def _store_asset(asset: StoryAsset) -> StoredAsset:
    return StoredAsset(
        name=asset.name,
        description=asset.description,
        name_english=asset.name_english,
        description_english=asset.description_english,
        image=asset.image,
    )


def record_from_context(
    context: ProcessingContext,
    title: str,
    processed: bool,
    segment_paths: Optional[List[str]] = None,
    error: Optional[str] = None,
) -> StoryRecord:
    scenes = []
    for scene in context.scenes:
        environment = context.environment_for(scene)
        scenes.append(StoredScene(
            caption_original=scene.caption_original,
            caption_english=scene.caption_english,
            environment=environment.display_name if environment else None,
            environment_name=scene.environment_name,
            characters=[c.display_name for c in context.characters_for(scene)],
            image=scene.image,
        ))

    return StoryRecord(
        id=context.id,
        title=title,
        timestamp=context.timestamp,
        processed=processed,
        error=error,
        prompt=context.prompt,
        segments=list(context.raw_segments),
        segment_paths=list(segment_paths or []),
        story_original=context.story_original,
        story_english=context.story_english,
        language=context.story_language,
        title_english=context.story_title_english,
        context_tags=list(context.context_tags),
        characters=[_store_asset(c) for c in context.characters],
        environments=[_store_asset(e) for e in context.environments],
        scenes=scenes,
    )


def context_from_record(record: StoryRecord) -> ProcessingContext:
    """Rebuild a context, re-linking scenes to assets by display name."""
    characters = [CharacterAsset(**stored.model_dump()) for stored in record.characters]
    environments = [EnvironmentAsset(**stored.model_dump()) for stored in record.environments]

    scenes = []
    for stored in record.scenes:
        environment = find_matching(environments, stored.environment)
        character_ids = []
        for name in stored.characters:
            character = find_matching(characters, name)
            if character is not None and character.id not in character_ids:
                character_ids.append(character.id)
        scenes.append(Scene(
            caption_original=stored.caption_original,
            caption_english=stored.caption_english,
            environment_id=environment.id if environment else None,
            environment_name=stored.environment_name,
            character_ids=character_ids,
            image=stored.image,
        ))

    return ProcessingContext(
        id=record.id,
        prompt=record.prompt,
        raw_segments=list(record.segments),
        timestamp=record.timestamp,
        story_original=record.story_original,
        story_english=record.story_english,
        story_language=record.language,
        story_title=record.title,
        story_title_english=record.title_english,
        characters=characters,
        environments=environments,
        scenes=scenes,
        context_tags=list(record.context_tags),
    )


# ---------- Repositories ----------

class StoryRepository(ABC):
    @abstractmethod
    def list_stories(self) -> List[StoryRecord]:
        ...

    @abstractmethod
    def get(self, story_id: str) -> Optional[StoryRecord]:
        ...

    @abstractmethod
    def upsert(self, record: StoryRecord) -> None:
        """Replace the record with the same id, or append it."""


class JsonStoryRepository(StoryRepository):
    """All stories in one JSON array file."""

    def __init__(self, path: str = "data/stories.json"):
        self.path = path

    def list_stories(self) -> List[StoryRecord]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return [StoryRecord.model_validate(item) for item in raw]

    def get(self, story_id: str) -> Optional[StoryRecord]:
        for record in self.list_stories():
            if record.id == story_id:
                return record
        return None

    def upsert(self, record: StoryRecord) -> None:
        records = self.list_stories()
        for i, existing in enumerate(records):
            if existing.id == record.id:
                records[i] = record
                break
        else:
            records.append(record)
        self._write(records)

    def _write(self, records: List[StoryRecord]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([r.model_dump(by_alias=True) for r in records], f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)
