"""
Pipeline steps and per-run step composition.

Text steps call the blocking requests-based client through asyncio.to_thread and only
write results onto the context after the await returns; image steps fan out per
asset with a bounded number of concurrent requests.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple, Union

from .artifact import CharacterAsset, EnvironmentAsset, ProcessingContext, Scene
from .asset_extractor import extract_characters, extract_environments
from .config import PipelineConfig
from .continuity import apply_continuity_plan, plan_scene_environments
from .image_generation import ImageClient, character_image_prompt, environment_image_prompt, scene_image_prompt
from .localizer import localize_assets, localize_title, should_localize
from .pipeline import GenerationStep, ProcessingStep, Reporter
from .scene_builder import build_scenes
from .stitcher import stitch_story

ImageTarget = Union[CharacterAsset, EnvironmentAsset, Scene]


def _english_story(context: ProcessingContext) -> Optional[str]:
    return context.story_english or context.story_original


# ---------- Text Steps ----------

class StoryStitchingStep(ProcessingStep):
    step = GenerationStep.STORY_STITCHING

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        result = await asyncio.to_thread(stitch_story, context.prompt, context.raw_segments, config)
        if result is None or not (result.story_original or result.story_english):
            report("Stitching produced no story text")
            return

        context.story_original = result.story_original
        context.story_english = result.story_english
        context.story_language = result.language
        context.context_tags = result.tags
        context.story_title_english = result.title_short

        if result.title_short and should_localize(result.language):
            context.story_title = await asyncio.to_thread(
                localize_title, result.title_short, result.language, config
            )
        else:
            context.story_title = result.title_short

        report(f"Story stitched ({context.story_language or 'unknown language'}, {len(context.context_tags)} tags)")


class CharacterExtractionStep(ProcessingStep):
    step = GenerationStep.CHARACTER_EXTRACTION

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        if not context.has_story:
            report("No story text, skipping character extraction")
            return
        characters = await asyncio.to_thread(
            extract_characters, _english_story(context), context.story_language, config
        )
        context.characters = await asyncio.to_thread(
            localize_assets, characters, context.story_language, config, "character"
        )
        report(f"{len(context.characters)} characters: {', '.join(c.display_name for c in context.characters)}")


class EnvironmentExtractionStep(ProcessingStep):
    step = GenerationStep.ENVIRONMENT_EXTRACTION

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        if not context.has_story:
            report("No story text, skipping environment extraction")
            return
        environments = await asyncio.to_thread(
            extract_environments, _english_story(context), context.story_language, config
        )
        context.environments = await asyncio.to_thread(
            localize_assets, environments, context.story_language, config, "environment"
        )
        report(f"{len(context.environments)} environments: {', '.join(e.display_name for e in context.environments)}")


class SceneCompositionStep(ProcessingStep):
    step = GenerationStep.SCENE_COMPOSITION

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        if not context.has_story:
            report("No story text, skipping scene composition")
            return
        context.scenes = await asyncio.to_thread(
            build_scenes,
            context.story_original,
            context.story_english,
            context.characters,
            context.environments,
            config,
        )
        report(f"{len(context.scenes)} scenes composed")


class EnvironmentContinuityStep(ProcessingStep):
    step = GenerationStep.ENVIRONMENT_CONTINUITY

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        if not context.scenes:
            report("No scenes, skipping environment continuity")
            return
        plan = await asyncio.to_thread(
            plan_scene_environments, context, config, report, cancelled=context.cancel_event
        )
        if plan is None:
            return
        apply_continuity_plan(context, plan)
        report(f"{len(context.environments)} unique environments across {len(context.scenes)} scenes")


# ---------- Image Steps ----------

async def generate_images(
    jobs: List[Tuple[ImageTarget, str, str, str]],
    config: PipelineConfig,
    run_id: str,
) -> int:
    """Run (target, prompt, image_type, name) jobs concurrently, writing paths onto targets.

    Returns the number of images produced. A failed image leaves target.image empty.
    """
    client = ImageClient(config, run_id)
    semaphore = asyncio.Semaphore(config.image_concurrency)

    async def run_one(target: ImageTarget, prompt: str, image_type: str, name: str) -> bool:
        async with semaphore:
            path = await client.generate(prompt, image_type, name)
        if path:
            target.image = path
            return True
        return False

    results = await asyncio.gather(*(run_one(*job) for job in jobs))
    return sum(1 for ok in results if ok)


class CharacterImagesStep(ProcessingStep):
    step = GenerationStep.CHARACTER_IMAGES

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        jobs = [
            (c, character_image_prompt(c, config.image_style, context.context_tags), "character", c.display_name)
            for c in context.characters
        ]
        done = await generate_images(jobs, config, context.id)
        report(f"Character images: {done}/{len(jobs)}")


class EnvironmentImagesStep(ProcessingStep):
    step = GenerationStep.ENVIRONMENT_IMAGES

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        jobs = [
            (e, environment_image_prompt(e, config.image_style, context.context_tags), "environment", e.display_name)
            for e in context.environments
        ]
        done = await generate_images(jobs, config, context.id)
        report(f"Environment images: {done}/{len(jobs)}")


class SceneImagesStep(ProcessingStep):
    step = GenerationStep.SCENE_IMAGES

    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        jobs = []
        for i, scene in enumerate(context.scenes):
            prompt = scene_image_prompt(
                scene,
                context.environment_for(scene),
                context.characters_for(scene),
                config.image_style,
                context.context_tags,
            )
            jobs.append((scene, prompt, "scene", f"scene_{i + 1}"))
        done = await generate_images(jobs, config, context.id)
        report(f"Scene images: {done}/{len(jobs)}")


# ---------- Composition ----------

def build_steps(config: PipelineConfig) -> List[ProcessingStep]:
    """Steps for one run; image steps only when enabled."""
    steps: List[ProcessingStep] = [
        StoryStitchingStep(),
        CharacterExtractionStep(),
        EnvironmentExtractionStep(),
    ]
    if config.generate_character_images:
        steps.append(CharacterImagesStep())
    steps.append(SceneCompositionStep())
    steps.append(EnvironmentContinuityStep())
    if config.generate_environment_images:
        steps.append(EnvironmentImagesStep())
    if config.generate_scene_images:
        steps.append(SceneImagesStep())
    return steps
