"""
Story Processing Pipeline

Runs an ordered list of steps over one shared ProcessingContext, reporting progress
after every step and forwarding the free-text log lines steps emit while running.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from .artifact import ProcessingContext
from .config import PipelineConfig
from .utils import save_context_checkpoint

ProgressCallback = Callable[[int, int, str], None]
LogCallback = Callable[[str], None]
Reporter = Callable[[str], None]
Finalizer = Callable[[ProcessingContext, Optional[BaseException]], Union[None, Awaitable[None]]]


# ---------- Errors ----------

class StoryPipelineError(Exception):
    """Base error of the story pipeline."""


class PipelineStepError(StoryPipelineError):
    """Unrecoverable failure inside a step."""

    def __init__(self, step_name: str, cause: BaseException):
        super().__init__(f"Step '{step_name}' failed: {cause}")
        self.step_name = step_name
        self.cause = cause


# ---------- Generation Steps ----------

class GenerationStep(Enum):
    STORY_STITCHING = "story_stitching"
    CHARACTER_EXTRACTION = "character_extraction"
    ENVIRONMENT_EXTRACTION = "environment_extraction"
    CHARACTER_IMAGES = "character_images"
    SCENE_COMPOSITION = "scene_composition"
    ENVIRONMENT_CONTINUITY = "environment_continuity"
    ENVIRONMENT_IMAGES = "environment_images"
    SCENE_IMAGES = "scene_images"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").upper()


class ProcessingStep(ABC):
    """One stage of the pipeline. Steps mutate the context they are given."""

    step: GenerationStep

    @property
    def name(self) -> str:
        return self.step.value

    @abstractmethod
    async def process(self, context: ProcessingContext, config: PipelineConfig, report: Reporter) -> None:
        ...


# ---------- Executor ----------

async def _call(callback, *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ProcessingPipeline:
    def __init__(self, steps: List[ProcessingStep]):
        self.steps = list(steps)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    async def run(
        self,
        context: ProcessingContext,
        config: PipelineConfig,
        on_progress: Optional[ProgressCallback] = None,
        on_log: Optional[LogCallback] = None,
        finalizer: Optional[Finalizer] = None,
    ) -> ProcessingContext:
        """Execute every step in order.

        A step error stops the run: remaining steps are not started, the finalizer
        (if given) receives the partial context and the error, and the error is
        re-raised. Cancellation is handled the same way, and additionally sets the
        context's cancel event so helpers still running in worker threads stop before
        their next request. On success the finalizer receives the context and None.

        Reports may come from worker threads; they are delivered on the loop thread
        and dropped once the run is cancelled.
        """
        total = len(self.steps)
        loop = asyncio.get_running_loop()
        loop_thread = threading.get_ident()

        def emit(line: str) -> None:
            if on_log is not None and not context.cancelled:
                on_log(line)

        try:
            for index, step in enumerate(self.steps):
                def report(message: str, _step: ProcessingStep = step) -> None:
                    if context.cancelled:
                        return
                    print(f"  · {message}")
                    line = f"[{_step.name}] {message}"
                    if threading.get_ident() == loop_thread:
                        emit(line)
                    else:
                        loop.call_soon_threadsafe(emit, line)

                print(f"\n🔹 [{index + 1}/{total}] {step.step.display_name}")
                try:
                    await step.process(context, config, report)
                except (StoryPipelineError, asyncio.CancelledError):
                    raise
                except Exception as e:
                    raise PipelineStepError(step.name, e) from e

                if config.save_checkpoints:
                    save_context_checkpoint(context, step.name, data_dir=config.data_dir)
                if on_progress is not None:
                    on_progress(index + 1, total, step.name)
        except BaseException as e:
            context.cancel()
            print(f"❌ Pipeline stopped: {e!r}")
            await _call(finalizer, context, e)
            raise

        await _call(finalizer, context, None)
        return context
