"""
Story Processing Pipeline

Turns narrated story segments into a bilingual, illustrated story: stitched narrative,
characters, environments, scenes with continuity-resolved environments, and images.
"""

from .artifact import (
    StrictModel,
    StoryAsset,
    CharacterAsset,
    EnvironmentAsset,
    Scene,
    ProcessingContext,
    StoryProcessingPayload,
    names_match,
)

from .config import (
    PipelineConfig,
    ImageStyle,
    ImageProvider,
)

from .pipeline import (
    GenerationStep,
    ProcessingStep,
    ProcessingPipeline,
    StoryPipelineError,
    PipelineStepError,
)

from .steps import build_steps

from .stitcher import stitch_story, parse_stitch_response
from .asset_extractor import extract_characters, extract_environments, extract_environment_for_scene
from .localizer import localize_assets, localize_title, should_localize
from .scene_builder import build_scenes
from .continuity import ContinuityPlan, apply_continuity_plan, plan_scene_environments, resolve_scene_environments
from .image_generation import ImageClient
from .title_resolver import resolve_title, sanitize_title

from .repository import (
    StoryRecord,
    StoryRepository,
    JsonStoryRepository,
    record_from_context,
    context_from_record,
)

from .worker import StoryProcessingWorker
from .transcription import Transcriber, GroqTranscriber

from .utils import (
    save_image_to_data,
    save_context_checkpoint,
    write_processing_payload,
    read_processing_payload,
)

__all__ = [
    # Core models
    "StrictModel",
    "StoryAsset",
    "CharacterAsset",
    "EnvironmentAsset",
    "Scene",
    "ProcessingContext",
    "StoryProcessingPayload",
    "names_match",

    # Config
    "PipelineConfig",
    "ImageStyle",
    "ImageProvider",

    # Pipeline
    "GenerationStep",
    "ProcessingStep",
    "ProcessingPipeline",
    "StoryPipelineError",
    "PipelineStepError",
    "build_steps",

    # Components
    "stitch_story",
    "parse_stitch_response",
    "extract_characters",
    "extract_environments",
    "extract_environment_for_scene",
    "localize_assets",
    "localize_title",
    "should_localize",
    "build_scenes",
    "resolve_scene_environments",
    "plan_scene_environments",
    "apply_continuity_plan",
    "ContinuityPlan",
    "ImageClient",
    "resolve_title",
    "sanitize_title",

    # Persistence
    "StoryRecord",
    "StoryRepository",
    "JsonStoryRepository",
    "record_from_context",
    "context_from_record",
    "StoryProcessingWorker",

    # Transcription
    "Transcriber",
    "GroqTranscriber",

    # Utils
    "save_image_to_data",
    "save_context_checkpoint",
    "write_processing_payload",
    "read_processing_payload",
]
