#!/usr/bin/env python3

from story_pipeline.artifact import EnvironmentAsset, ProcessingContext, Scene
from story_pipeline.continuity import remap_scene_environments, resolve_environment, resolve_scene_environments


def _scene(text, environment_id=None, environment_name=None):
    return Scene(caption_original=text, caption_english=text,
                 environment_id=environment_id, environment_name=environment_name)


def _keep(assets, language, config, asset_type="asset", tag=None):
    return assets


def _scripted_extract(names):
    """Extractor returning a fresh EnvironmentAsset per scene, in order."""
    seen = []

    def extract(caption_original, caption_english, suggested, previous, characters, language, config, tag=None):
        seen.append({"suggested": suggested, "previous": previous})
        name = names[len(seen) - 1]
        if name is None:
            return None
        return EnvironmentAsset(name=name, description=f"{name} as seen in scene {len(seen)}")

    extract.seen = seen
    return extract


def test_revisited_place_keeps_one_asset(config):
    kitchen = EnvironmentAsset(name="Kitchen", description="Warm old kitchen")
    context = ProcessingContext(
        story_language="English",
        environments=[kitchen],
        scenes=[
            _scene("I walk into the kitchen.", kitchen.id, "Kitchen"),
            _scene("Grandma bakes bread.", kitchen.id, "Kitchen"),
        ],
    )
    extract = _scripted_extract(["kitchen", "KITCHEN"])

    resolve_scene_environments(context, config, extract=extract, localize=_keep)

    assert context.environments == [kitchen]
    first, second = (context.environment_for(s) for s in context.scenes)
    assert first is kitchen and second is kitchen
    # the second scene sees the first scene's resolved environment as previous
    assert extract.seen[1]["previous"] is kitchen
    assert extract.seen[0]["suggested"] == "Kitchen"


def test_return_to_earlier_place_reuses_it(config):
    context = ProcessingContext(scenes=[_scene("a"), _scene("b"), _scene("c")])
    extract = _scripted_extract(["Kitchen", "Garden", "kitchen"])
    reports = []

    resolve_scene_environments(context, config, report=reports.append, extract=extract, localize=_keep)

    assert [e.name for e in context.environments] == ["Kitchen", "Garden"]
    ids = [s.environment_id for s in context.scenes]
    assert ids[0] == ids[2] != ids[1]
    assert reports == ["Scene 1/3: Kitchen", "Scene 2/3: Garden", "Scene 3/3: Kitchen"]


def test_no_candidate_keeps_attached_environment(config):
    attic = EnvironmentAsset(name="Attic", description="Dusty attic")
    context = ProcessingContext(environments=[attic], scenes=[_scene("a", attic.id)])

    resolve_scene_environments(context, config, extract=_scripted_extract([None]), localize=_keep)

    assert context.scenes[0].environment_id == attic.id
    assert context.environments == [attic]


def test_unresolved_story_environments_are_kept(config):
    kitchen = EnvironmentAsset(name="Kitchen", description="Warm")
    attic = EnvironmentAsset(name="Attic", description="Dusty")
    context = ProcessingContext(environments=[kitchen, attic], scenes=[_scene("a")])

    resolve_scene_environments(context, config, extract=_scripted_extract(["Kitchen"]), localize=_keep)

    assert context.environments == [kitchen, attic]
    assert context.scenes[0].environment_id == kitchen.id


def test_resolution_rules():
    previous = EnvironmentAsset(name="Cucina", description="x", name_english="Kitchen")
    unique = [previous]

    same = resolve_environment(EnvironmentAsset(name="kitchen", description="y"), None, previous, unique, [])
    assert same is previous

    garden = EnvironmentAsset(name="Garden", description="z")
    assert resolve_environment(garden, None, previous, unique, []) is garden
    assert unique == [previous, garden]

    again = resolve_environment(EnvironmentAsset(name="GARDEN", description="w"), None, previous, unique, [])
    assert again is garden
    assert len(unique) == 2


def test_localized_copies_are_remapped(config):
    context = ProcessingContext(story_language="Italian", scenes=[_scene("a"), _scene("b")])

    def localize(assets, language, config, asset_type="asset", tag=None):
        # new objects with new ids, as a translation layer that rebuilds assets would return
        return [
            EnvironmentAsset(name="Cucina", description="Calda", name_english=a.name, description_english=a.description)
            for a in assets
        ]

    resolve_scene_environments(context, config, extract=_scripted_extract(["Kitchen", "Kitchen"]), localize=localize)

    (cucina,) = context.environments
    assert cucina.name == "Cucina" and cucina.display_name == "Kitchen"
    assert [s.environment_id for s in context.scenes] == [cucina.id, cucina.id]


def test_remap_falls_back_to_scene_hint():
    garden = EnvironmentAsset(name="Giardino", description="Verde", name_english="Garden")
    scenes = [_scene("a", "environment_gone", "garden"), _scene("b", "environment_gone")]

    remap_scene_environments(scenes, [garden])

    assert scenes[0].environment_id == garden.id
    assert scenes[1].environment_id is None
