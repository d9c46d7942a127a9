"""
Background worker: one story run at a time.

Submitting a new payload cancels the run in progress (replace policy), waits for its
finalizer to persist the partial result, then starts the new run.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from .artifact import ProcessingContext, StoryProcessingPayload
from .config import PipelineConfig
from .pipeline import LogCallback, ProcessingPipeline, ProcessingStep, ProgressCallback
from .repository import StoryRecord, StoryRepository, record_from_context
from .steps import build_steps
from .title_resolver import resolve_title
from .utils import delete_files


def format_step_name(name: str) -> str:
    """character_extraction / CharacterExtractionStep -> CHARACTER EXTRACTION"""
    if name.endswith("Step"):
        name = name[: -len("Step")]
    words = []
    current = ""
    for char in name.replace("_", " "):
        if char == " ":
            if current:
                words.append(current)
            current = ""
        elif char.isupper() and current and not current[-1].isupper():
            words.append(current)
            current = char
        else:
            current += char
    if current:
        words.append(current)
    return " ".join(words).upper()


class StoryProcessingWorker:
    def __init__(
        self,
        config: PipelineConfig,
        repository: StoryRepository,
        steps_factory: Callable[[PipelineConfig], List[ProcessingStep]] = build_steps,
        on_progress: Optional[ProgressCallback] = None,
        on_log: Optional[LogCallback] = None,
    ):
        self.config = config
        self.repository = repository
        self.steps_factory = steps_factory
        self.on_progress = on_progress
        self.on_log = on_log
        self.last_record: Optional[StoryRecord] = None
        self._current: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    async def submit(self, payload: StoryProcessingPayload) -> asyncio.Task:
        """Start a run for payload, replacing the one in progress."""
        previous = self._current
        if previous is not None and not previous.done():
            print("⏹️  Replacing the story run in progress")
            previous.cancel()
            # waits without re-raising the old run's outcome
            await asyncio.wait({previous})

        task = asyncio.create_task(self._run(payload))
        self._current = task
        return task

    async def process(self, payload: StoryProcessingPayload) -> ProcessingContext:
        task = await self.submit(payload)
        return await task

    async def _run(self, payload: StoryProcessingPayload) -> ProcessingContext:
        context = payload.to_context()
        pipeline = ProcessingPipeline(self.steps_factory(self.config))
        print(f"🚀 Processing story {context.id} ({len(context.raw_segments)} segments, {len(pipeline.steps)} steps)")

        def finalizer(ctx: ProcessingContext, error: Optional[BaseException]) -> None:
            self.finalize(ctx, payload, error)

        return await pipeline.run(
            context,
            self.config,
            on_progress=self._progress,
            on_log=self._log,
            finalizer=finalizer,
        )

    def _progress(self, current: int, total: int, step_name: str) -> None:
        self._log(f"[{current}/{total}] >>> {format_step_name(step_name)}")
        if self.on_progress is not None:
            self.on_progress(current, total, step_name)

    def _log(self, message: str) -> None:
        if self.on_log is not None:
            self.on_log(message)

    def finalize(
        self,
        context: ProcessingContext,
        payload: StoryProcessingPayload,
        error: Optional[BaseException] = None,
    ) -> StoryRecord:
        """Persist whatever the run produced.

        The story counts as processed only when it has narrative text and the run
        finished. Raw segment files are deleted only for processed stories.
        """
        processed = context.has_story and error is None
        existing = self.repository.get(context.id)
        if existing is not None:
            context.timestamp = existing.timestamp

        title = resolve_title(
            payload.user_title,
            context.story_title_english,
            context.story_title,
            context.timestamp,
        )

        segment_paths = list(payload.segment_paths)
        if processed:
            segment_paths = delete_files(segment_paths)

        if isinstance(error, asyncio.CancelledError):
            error_text = "cancelled"
        else:
            error_text = str(error) if error is not None else None

        record = record_from_context(context, title, processed, segment_paths, error=error_text)
        self.repository.upsert(record)
        self.last_record = record

        status = "✅" if processed else "⚠️ "
        print(f"{status} Story saved: {title} (processed={processed})")
        return record
