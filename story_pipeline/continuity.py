"""
Environment continuity resolution.

Scenes are walked in narrative order. Each scene gets a candidate environment from the
extractor, which is then resolved against the previous scene's environment and the
environments already seen, so a place the story revisits keeps a single asset.
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional
from pydantic import BaseModel

from .artifact import EnvironmentAsset, ProcessingContext, Scene
from .asset_extractor import extract_environment_for_scene
from .config import PipelineConfig
from .localizer import localize_assets


def _same_place(known: EnvironmentAsset, candidate: EnvironmentAsset) -> bool:
    return (
        known.matches(candidate.display_name)
        or known.matches(candidate.name)
        or candidate.matches(known.display_name)
    )


def _find_same_place(environments: List[EnvironmentAsset], candidate: EnvironmentAsset) -> Optional[EnvironmentAsset]:
    for environment in environments:
        if _same_place(environment, candidate):
            return environment
    return None


def resolve_environment(
    candidate: Optional[EnvironmentAsset],
    attached: Optional[EnvironmentAsset],
    previous: Optional[EnvironmentAsset],
    unique: List[EnvironmentAsset],
    known: List[EnvironmentAsset],
) -> Optional[EnvironmentAsset]:
    """Pick the environment for one scene and register it in unique.

    1. No candidate: keep what the scene builder attached.
    2. Candidate matches the previous scene's environment: reuse previous.
    3. Candidate matches an environment already seen (this run's unique list, then
       the story-level table in known): reuse it.
    4. Otherwise the candidate is a new environment.
    """
    if candidate is None:
        chosen = attached
    elif previous is not None and _same_place(previous, candidate):
        chosen = previous
    else:
        chosen = _find_same_place(unique, candidate) or _find_same_place(known, candidate) or candidate

    if chosen is not None and not any(environment is chosen for environment in unique):
        unique.append(chosen)
    return chosen


def remap_scene_environments(scenes: List[Scene], environments: List[EnvironmentAsset],
                             previous: Optional[List[EnvironmentAsset]] = None) -> None:
    """Point every scene at an entry of environments again, by id and then by name."""
    ids = {environment.id for environment in environments}
    by_old_id = {environment.id: environment for environment in previous or []}

    for scene in scenes:
        if scene.environment_id is None or scene.environment_id in ids:
            continue
        old = by_old_id.get(scene.environment_id)
        replacement = None
        if old is not None:
            replacement = _find_same_place(environments, old)
        if replacement is None and scene.environment_name:
            replacement = next((e for e in environments if e.matches(scene.environment_name)), None)
        scene.environment_id = replacement.id if replacement else None


class ContinuityPlan(BaseModel):
    """Resolved environments for a context, not yet written onto it."""
    environment_ids: List[Optional[str]]
    environments: List[EnvironmentAsset]


def plan_scene_environments(
    context: ProcessingContext,
    config: PipelineConfig,
    report: Optional[Callable[[str], None]] = None,
    extract=extract_environment_for_scene,
    localize=localize_assets,
    cancelled: Optional[threading.Event] = None,
    tag: str = "EnvironmentContinuity",
) -> Optional[ContinuityPlan]:
    """Assign one canonical environment per scene without touching context.

    Works on copies of the scenes. The unique environments are localized in one
    batch and scene references are re-resolved against the localized list.
    Returns None as soon as cancelled is set; no call is started after that.
    """
    def stopped() -> bool:
        if cancelled is not None and cancelled.is_set():
            print(f"⏹️  {tag}: run cancelled, abandoning environment continuity")
            return True
        return False

    scenes = [scene.model_copy() for scene in context.scenes]
    previous: Optional[EnvironmentAsset] = None
    unique: List[EnvironmentAsset] = []
    known = list(context.environments)

    for i, scene in enumerate(scenes):
        if stopped():
            return None
        attached = context.environment_by_id(scene.environment_id)
        hint = scene.environment_name or (attached.display_name if attached else None)
        candidate = extract(
            scene.caption_original,
            scene.caption_english,
            hint,
            previous,
            context.characters_for(scene),
            context.story_language,
            config,
            tag=tag,
        )
        chosen = resolve_environment(candidate, attached, previous, unique, known)
        scene.environment_id = chosen.id if chosen else None
        previous = chosen

        if report:
            label = chosen.display_name if chosen else "no environment"
            report(f"Scene {i + 1}/{len(scenes)}: {label}")

    # story-level environments no scene resolved to are kept, never duplicated
    leftovers = [
        environment for environment in known
        if not any(environment is u or _same_place(u, environment) for u in unique)
    ]

    if stopped():
        return None
    localized = localize(unique, context.story_language, config, asset_type="environment", tag=tag)
    environments = list(localized) + leftovers
    remap_scene_environments(scenes, environments, previous=unique)

    print(f"🗺️  {tag}: {len(scenes)} scenes -> {len(environments)} environments")
    return ContinuityPlan(environment_ids=[scene.environment_id for scene in scenes], environments=environments)


def apply_continuity_plan(context: ProcessingContext, plan: ContinuityPlan) -> ProcessingContext:
    for scene, environment_id in zip(context.scenes, plan.environment_ids):
        scene.environment_id = environment_id
    context.environments = plan.environments
    return context


def resolve_scene_environments(
    context: ProcessingContext,
    config: PipelineConfig,
    report: Optional[Callable[[str], None]] = None,
    extract=extract_environment_for_scene,
    localize=localize_assets,
    tag: str = "EnvironmentContinuity",
) -> ProcessingContext:
    """Plan and apply environment continuity in one go."""
    plan = plan_scene_environments(context, config, report, extract=extract, localize=localize, tag=tag)
    if plan is not None:
        apply_continuity_plan(context, plan)
    return context
