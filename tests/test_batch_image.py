#!/usr/bin/env python3

import asyncio
import os

from story_pipeline.artifact import CharacterAsset, EnvironmentAsset, ProcessingContext, Scene
from story_pipeline.config import ImageStyle
from story_pipeline.image_generation import ImageClient, character_image_prompt, scene_image_prompt
from story_pipeline.steps import CharacterImagesStep, SceneImagesStep, generate_images

from conftest import PNG_BYTES


def _context():
    kitchen = EnvironmentAsset(name="Kitchen", description="Warm old kitchen with a wood stove")
    grandma = CharacterAsset(name="Grandma", description="Elderly woman in a flour-dusted apron")
    villain = CharacterAsset(name="Villain", description="Shadowy figure")
    cat = CharacterAsset(name="Cat", description="Ginger cat")
    scene = Scene(
        caption_original="Grandma bakes bread.",
        caption_english="Grandma bakes bread.",
        environment_id=kitchen.id,
        character_ids=[grandma.id],
    )
    return ProcessingContext(
        id="run-images",
        characters=[grandma, villain, cat],
        environments=[kitchen],
        scenes=[scene],
        context_tags=["Mood: cozy", "Palette: amber"],
    )


async def test_failed_image_does_not_stop_siblings(config, monkeypatch):
    async def backend(self, prompt):
        if "Villain" in prompt:
            raise RuntimeError("content filtered")
        return PNG_BYTES

    monkeypatch.setattr(ImageClient, "_generate_bytes", backend)
    context = _context()
    logs = []

    await CharacterImagesStep().process(context, config, logs.append)

    grandma, villain, cat = context.characters
    assert grandma.image and os.path.exists(grandma.image)
    assert cat.image and os.path.exists(cat.image)
    assert villain.image is None
    assert logs == ["Character images: 2/3"]


async def test_scene_image_written_onto_scene(config, monkeypatch):
    prompts = []

    async def backend(self, prompt):
        prompts.append(prompt)
        return PNG_BYTES

    monkeypatch.setattr(ImageClient, "_generate_bytes", backend)
    context = _context()

    await SceneImagesStep().process(context, config, lambda message: None)

    assert context.scenes[0].image is not None
    assert "Scene: Grandma bakes bread." in prompts[0]
    assert "Environment: Kitchen. Warm old kitchen with a wood stove" in prompts[0]
    assert "- Grandma: Elderly woman in a flour-dusted apron" in prompts[0]


async def test_concurrency_is_bounded(config, monkeypatch):
    config.image_concurrency = 2
    active = {"now": 0, "max": 0}

    async def backend(self, prompt):
        active["now"] += 1
        active["max"] = max(active["max"], active["now"])
        await asyncio.sleep(0.01)
        active["now"] -= 1
        return PNG_BYTES

    monkeypatch.setattr(ImageClient, "_generate_bytes", backend)
    targets = [CharacterAsset(name=f"C{i}", description="d") for i in range(6)]
    jobs = [(t, f"prompt {i}", "character", t.name) for i, t in enumerate(targets)]

    done = await generate_images(jobs, config, "run-bounded")

    assert done == 6
    assert active["max"] <= 2


def test_prompts_carry_style_and_context_tags():
    context = _context()
    grandma = context.characters[0]

    prompt = character_image_prompt(grandma, ImageStyle.MANGA, context.context_tags)
    assert "manga" in prompt
    assert "Grandma. Elderly woman" in prompt
    assert prompt.endswith("Context: Mood: cozy; Palette: amber")

    scene_prompt = scene_image_prompt(context.scenes[0], None, [], ImageStyle.CARTOON, [])
    assert "cartoon" in scene_prompt
    assert "Context:" not in scene_prompt
