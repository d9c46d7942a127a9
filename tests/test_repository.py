#!/usr/bin/env python3

import json

from story_pipeline.artifact import CharacterAsset, EnvironmentAsset, ProcessingContext, Scene
from story_pipeline.repository import JsonStoryRepository, context_from_record, record_from_context


def _context():
    grandma = CharacterAsset(name="Nonna", description="Fornaia", name_english="Grandma", description_english="Baker")
    kitchen = EnvironmentAsset(name="Cucina", description="Calda", name_english="Kitchen", description_english="Warm")
    scene = Scene(
        caption_original="La nonna fa il pane.",
        caption_english="Grandma bakes bread.",
        environment_id=kitchen.id,
        environment_name="Kitchen",
        character_ids=[grandma.id],
    )
    return ProcessingContext(
        id="story-1",
        prompt="Tell it warmly",
        raw_segments=["segment one"],
        timestamp=1_700_000_000_000,
        story_original="La nonna fa il pane.",
        story_english="Grandma bakes bread.",
        story_language="Italian",
        story_title="Il Pane",
        story_title_english="The Bread",
        characters=[grandma],
        environments=[kitchen],
        scenes=[scene],
        context_tags=["Mood: cozy"],
    )


def test_records_are_stored_with_camel_case_keys(temp_dir):
    repository = JsonStoryRepository(str(temp_dir / "stories" / "stories.json"))
    repository.upsert(record_from_context(_context(), "Il Pane", processed=True))

    with open(temp_dir / "stories" / "stories.json", encoding="utf-8") as f:
        (stored,) = json.load(f)

    assert stored["storyOriginal"] == "La nonna fa il pane."
    assert stored["titleEnglish"] == "The Bread"
    assert stored["characters"][0]["nameEnglish"] == "Grandma"
    assert stored["characters"][0]["descriptionEnglish"] == "Baker"
    assert stored["scenes"][0]["environment"] == "Kitchen"
    assert stored["scenes"][0]["characters"] == ["Grandma"]


def test_upsert_replaces_by_id(temp_dir):
    repository = JsonStoryRepository(str(temp_dir / "stories.json"))
    repository.upsert(record_from_context(_context(), "First", processed=False))
    repository.upsert(record_from_context(_context(), "Second", processed=True))

    (record,) = repository.list_stories()
    assert (record.title, record.processed) == ("Second", True)
    assert repository.get("missing") is None


def test_round_trip_relinks_scenes(temp_dir):
    repository = JsonStoryRepository(str(temp_dir / "stories.json"))
    repository.upsert(record_from_context(_context(), "Il Pane", processed=True))

    context = context_from_record(repository.get("story-1"))

    environment = context.environment_for(context.scenes[0])
    assert environment is not None and environment.name == "Cucina"
    assert [c.display_name for c in context.characters_for(context.scenes[0])] == ["Grandma"]
    assert context.story_language == "Italian"
    assert context.context_tags == ["Mood: cozy"]


def test_missing_file_lists_nothing(temp_dir):
    assert JsonStoryRepository(str(temp_dir / "absent.json")).list_stories() == []
