"""
File utilities for the story pipeline

- Saving generated images under the run's own directory with systematic naming
- Writing/reading processing payloads handed to the background worker
- Saving context checkpoints after each step
"""

import io
import os
import re
import json
import uuid
from datetime import datetime
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

from .artifact import ProcessingContext, StoryProcessingPayload


def sanitize_name(name: str) -> str:
    # Replace spaces and special characters with underscores
    sanitized = re.sub(r'[^\w\-_]', '_', name)
    sanitized = re.sub(r'_+', '_', sanitized)
    return sanitized.strip('_').lower() or "item"


def run_images_dir(run_id: str, data_dir: str = "data") -> str:
    """Image directory owned by one run: {data_dir}/{run_id}/images/"""
    return os.path.join(data_dir, sanitize_name(run_id), "images")


def image_extension(image_bytes: bytes, default: str = "png") -> str:
    """File extension for the image format Pillow detects in image_bytes."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            image_format = img.format
    except (UnidentifiedImageError, OSError):
        return default
    if not image_format:
        return default
    image_format = image_format.lower()
    return "jpg" if image_format == "jpeg" else image_format


def save_image_to_data(image_bytes: bytes, run_id: str, image_type: str, item_name: str,
                       data_dir: str = "data", extension: Optional[str] = None) -> str:
    """Save image to the run's folder with systematic naming convention.

    Args:
        image_bytes: The image data as bytes
        run_id: Id of the run that owns the image
        image_type: Type of image ('character', 'environment', 'scene')
        item_name: Name of the item being generated
        extension: File extension; detected from the bytes when omitted

    Returns:
        Local file path to the saved image
    """
    images_dir = run_images_dir(run_id, data_dir)
    os.makedirs(images_dir, exist_ok=True)
    extension = extension or image_extension(image_bytes)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filename = f"{sanitize_name(image_type)}_{sanitize_name(item_name)}_{timestamp}.{extension}"
    filepath = os.path.join(images_dir, filename)

    with open(filepath, "wb") as f:
        f.write(image_bytes)

    return filepath


def save_context_checkpoint(context: ProcessingContext, step_name: str, data_dir: str = "data") -> str:
    """Dump the context after a step, for inspecting partial runs."""
    run_dir = os.path.join(data_dir, sanitize_name(context.id))
    os.makedirs(run_dir, exist_ok=True)
    filepath = os.path.join(run_dir, f"context_after_{sanitize_name(step_name)}.json")

    with open(filepath, "w", encoding="utf-8") as f:
        f.write(context.model_dump_json(indent=2))

    print(f"💾 Checkpoint saved: {filepath}")
    return filepath


def write_processing_payload(payload: StoryProcessingPayload, data_dir: str = "data") -> str:
    """Write payload_{story id}_{uuid}.json under {data_dir}/processing_payloads/."""
    payload_dir = os.path.join(data_dir, "processing_payloads")
    os.makedirs(payload_dir, exist_ok=True)
    story_part = sanitize_name(payload.story_id) if payload.story_id else "new"
    filepath = os.path.join(payload_dir, f"payload_{story_part}_{uuid.uuid4().hex}.json")

    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(payload.model_dump(), f, ensure_ascii=False, indent=2)

    return filepath


def read_processing_payload(path: str) -> StoryProcessingPayload:
    with open(path, "r", encoding="utf-8") as f:
        return StoryProcessingPayload.model_validate(json.load(f))


def delete_files(paths: List[str]) -> List[str]:
    """Delete files, returning the paths that could not be removed."""
    remaining = []
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            continue
        except OSError as e:
            print(f"⚠️  Could not delete {path}: {e}")
            remaining.append(path)
    return remaining
