#!/usr/bin/env python3

import argparse
import asyncio
import json
from dotenv import load_dotenv

from story_pipeline import (
    GroqTranscriber,
    JsonStoryRepository,
    PipelineConfig,
    StoryProcessingPayload,
    StoryProcessingWorker,
    read_processing_payload,
    write_processing_payload,
)

load_dotenv()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Turn narrated story segments into an illustrated story")
    parser.add_argument("segments", nargs="*", help="Story segments as text")
    parser.add_argument("--prompt", default="", help="Instructions for the storyteller model")
    parser.add_argument("--title", default=None, help="Title to use if none can be extracted")
    parser.add_argument("--story-id", default=None, help="Existing story id to reprocess")
    parser.add_argument("--audio", nargs="*", default=[], help="Audio segments to transcribe with Groq Whisper")
    parser.add_argument("--payload", default=None, help="Run a saved processing payload JSON file")
    parser.add_argument("--language", default=None, help="Force the story language (e.g. English)")
    parser.add_argument("--no-images", action="store_true", help="Skip all image steps")
    parser.add_argument("--stories", default=None, help="Story repository JSON file (default: <data dir>/stories.json)")
    return parser.parse_args(argv)


async def main(argv=None):
    args = parse_args(argv)

    overrides = {}
    if args.language:
        overrides["forced_language"] = args.language
    if args.no_images:
        overrides.update(
            generate_character_images=False,
            generate_environment_images=False,
            generate_scene_images=False,
        )
    config = PipelineConfig.from_env(**overrides)

    if args.payload:
        payload = read_processing_payload(args.payload)
    else:
        transcriptions = list(args.segments)
        if args.audio:
            transcriber = GroqTranscriber(api_key=config.groq_api_key, log_path=config.llm_log_path)
            transcriptions += transcriber.transcribe_all(args.audio)
        payload = StoryProcessingPayload(
            story_id=args.story_id,
            prompt=args.prompt,
            transcriptions=transcriptions,
            user_title=args.title,
            segment_paths=list(args.audio),
        )
        payload_path = write_processing_payload(payload, data_dir=config.data_dir)
        print(f"Payload written to {payload_path}")

    if not payload.transcriptions:
        print("Nothing to process: no segments given")
        return None

    repository = JsonStoryRepository(args.stories or f"{config.data_dir}/stories.json")
    worker = StoryProcessingWorker(config, repository, on_log=print)

    print("=" * 50)
    context = await worker.process(payload)
    print("=" * 50)

    record = worker.last_record
    print(f"Title: {record.title if record else context.story_title}")
    print(f"Characters: {len(context.characters)}, environments: {len(context.environments)}, scenes: {len(context.scenes)}")
    if record:
        print(json.dumps(record.model_dump(by_alias=True), ensure_ascii=False, indent=2)[:2000])
    return context


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
