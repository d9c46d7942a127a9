from __future__ import annotations

import threading
import time
import uuid
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, PrivateAttr


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def now_millis() -> int:
    return int(time.time() * 1000)


def names_match(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive name equality; blank names never match."""
    if not left or not right:
        return False
    left, right = left.strip(), right.strip()
    if not left or not right:
        return False
    return left.casefold() == right.casefold()


# ---------- Base (forbid unknown keys) ----------

class StrictModel(BaseModel):
    """Base model that rejects unknown fields to keep outputs clean."""
    model_config = ConfigDict(extra="forbid")


# ---------- Story Assets ----------

class StoryAsset(StrictModel):
    """A named entity of the story.

    ``name``/``description`` hold the presentation text (localized when the story is
    not in English). ``name_english``/``description_english`` keep the canonical English
    text once the asset has passed through localization.
    """
    id: str
    name: str = Field(..., description="Name of the entity.")
    description: str = Field(..., description="Visual description of the entity.")
    name_english: Optional[str] = Field(None, description="Canonical English name.")
    description_english: Optional[str] = Field(None, description="Canonical English description.")
    image: Optional[str] = Field(None, description="Path to the generated image.")

    @property
    def display_name(self) -> str:
        if self.name_english and self.name_english.strip():
            return self.name_english
        return self.name

    @property
    def english_name(self) -> str:
        return self.display_name

    @property
    def english_description(self) -> str:
        if self.description_english and self.description_english.strip():
            return self.description_english
        return self.description

    def matches(self, candidate: Optional[str]) -> bool:
        """True if candidate equals name, name_english or display_name, ignoring case."""
        return any(names_match(value, candidate) for value in (self.name, self.name_english, self.display_name))


class CharacterAsset(StoryAsset):
    """A character or group in the story."""
    id: str = Field(default_factory=lambda: new_id("character"))


class EnvironmentAsset(StoryAsset):
    """A specific place used in the story."""
    id: str = Field(default_factory=lambda: new_id("environment"))


def find_matching(assets: List[StoryAsset], candidate: Optional[str]) -> Optional[StoryAsset]:
    for asset in assets:
        if asset.matches(candidate):
            return asset
    return None


# ---------- Scenes ----------

class Scene(StrictModel):
    """One narrative beat. Assets are referenced by id into the context tables."""
    caption_original: str = Field(..., description="Caption in the story's original language.")
    caption_english: str = Field(..., description="Caption in English.")
    environment_id: Optional[str] = Field(None, description="Id of the resolved environment.")
    environment_name: Optional[str] = Field(None, description="Environment name suggested by the scene builder, unresolved.")
    character_ids: List[str] = Field(default_factory=list)
    image: Optional[str] = None


# ---------- Processing Context ----------

class ProcessingContext(BaseModel):
    """Unit of work threaded through every pipeline step."""
    model_config = ConfigDict(validate_assignment=False)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    prompt: str = ""
    raw_segments: List[str] = Field(default_factory=list)
    user_title: Optional[str] = None
    timestamp: int = Field(default_factory=now_millis)

    story_original: Optional[str] = None
    story_english: Optional[str] = None
    story_language: Optional[str] = None
    story_title: Optional[str] = None
    story_title_english: Optional[str] = None

    characters: List[CharacterAsset] = Field(default_factory=list)
    environments: List[EnvironmentAsset] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    context_tags: List[str] = Field(default_factory=list)

    _cancel_event: threading.Event = PrivateAttr(default_factory=threading.Event)

    @property
    def has_story(self) -> bool:
        return bool((self.story_original or "").strip() or (self.story_english or "").strip())

    def environment_by_id(self, environment_id: Optional[str]) -> Optional[EnvironmentAsset]:
        if not environment_id:
            return None
        for environment in self.environments:
            if environment.id == environment_id:
                return environment
        return None

    def environment_for(self, scene: Scene) -> Optional[EnvironmentAsset]:
        return self.environment_by_id(scene.environment_id)

    def characters_for(self, scene: Scene) -> List[CharacterAsset]:
        by_id = {character.id: character for character in self.characters}
        return [by_id[cid] for cid in scene.character_ids if cid in by_id]

    # ---------- Cancellation ----------

    @property
    def cancel_event(self) -> threading.Event:
        """Set once the run is cancelled; blocking helpers check it between calls."""
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()


class StoryProcessingPayload(StrictModel):
    """Everything a background run needs, serialized so it can be handed to the worker."""
    story_id: Optional[str] = None
    prompt: str = ""
    transcriptions: List[str] = Field(default_factory=list)
    user_title: Optional[str] = None
    timestamp: int = Field(default_factory=now_millis)
    segment_paths: List[str] = Field(default_factory=list)

    def to_context(self) -> ProcessingContext:
        return ProcessingContext(
            id=self.story_id or uuid.uuid4().hex,
            prompt=self.prompt,
            raw_segments=list(self.transcriptions),
            user_title=self.user_title,
            timestamp=self.timestamp,
        )
