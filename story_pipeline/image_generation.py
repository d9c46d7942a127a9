"""
Image synthesis for characters, environments and scenes.

Three backends:
- openrouter: chat completion returning inline base64, retried by appending a
  corrective message to the conversation
- fal: REST endpoint returning an inline URL, a URL nested under "response", or a
  response_url that is polled
- fal_client: the fal-client library's queue subscription
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
import fal_client

from openrouter_wrapper import generate_image_async, log_llm_call

from .artifact import CharacterAsset, EnvironmentAsset, Scene
from .config import ImageProvider, ImageStyle, PipelineConfig
from .prompts import CHARACTER_IMAGE_PROMPT, ENVIRONMENT_IMAGE_PROMPT, SCENE_IMAGE_PROMPT, render
from .utils import save_image_to_data

FAL_RUN_URL = "https://fal.run/{model}"
PENDING_STATUSES = {"IN_PROGRESS", "IN_QUEUE", "PENDING"}


# ---------- Prompts ----------

def build_image_prompt(template: str, description: str, style: ImageStyle, context_tags: List[str]) -> str:
    prompt = render(template, style=style.prompt, description=description.strip())
    if context_tags:
        prompt += f"\nContext: {'; '.join(context_tags)}"
    return prompt


def character_image_prompt(character: CharacterAsset, style: ImageStyle, context_tags: List[str]) -> str:
    return build_image_prompt(
        CHARACTER_IMAGE_PROMPT,
        f"{character.english_name}. {character.english_description}",
        style, context_tags,
    )


def environment_image_prompt(environment: EnvironmentAsset, style: ImageStyle, context_tags: List[str]) -> str:
    return build_image_prompt(
        ENVIRONMENT_IMAGE_PROMPT,
        f"{environment.english_name}. {environment.english_description}",
        style, context_tags,
    )


def scene_image_prompt(
    scene: Scene,
    environment: Optional[EnvironmentAsset],
    characters: List[CharacterAsset],
    style: ImageStyle,
    context_tags: List[str],
) -> str:
    lines = [f"Scene: {scene.caption_english}"]
    if environment is not None:
        lines.append(f"Environment: {environment.english_name}. {environment.english_description}")
    elif scene.environment_name:
        lines.append(f"Environment: {scene.environment_name}")
    if characters:
        lines.append("Characters:")
        lines.extend(f"- {c.english_name}: {c.english_description}" for c in characters)
    return build_image_prompt(SCENE_IMAGE_PROMPT, "\n".join(lines), style, context_tags)


# ---------- fal response shapes ----------

def extract_fal_image_url(data: Any) -> Optional[str]:
    """First image URL in a fal result: images[].url|image_url, then image.url, then url."""
    if not isinstance(data, dict):
        return None

    images = data.get("images")
    if isinstance(images, list):
        for image in images:
            if isinstance(image, dict):
                url = image.get("url") or image.get("image_url")
                if isinstance(url, str) and url:
                    return url
            elif isinstance(image, str) and image:
                return image

    image = data.get("image")
    if isinstance(image, dict) and isinstance(image.get("url"), str) and image["url"]:
        return image["url"]

    url = data.get("url")
    if isinstance(url, str) and url:
        return url
    return None


async def poll_fal_result(
    fetch: Callable[[str], Awaitable[Optional[Dict[str, Any]]]],
    response_url: str,
    attempts: int = 10,
    interval: float = 1.0,
) -> Optional[str]:
    """Poll response_url until an image URL appears.

    Stops with None as soon as the reported status is not one of IN_PROGRESS,
    IN_QUEUE or PENDING, and after at most `attempts` fetches.
    """
    for attempt in range(attempts):
        data = await fetch(response_url)
        if data is None:
            return None

        nested = data.get("response")
        url = extract_fal_image_url(nested) or extract_fal_image_url(data)
        if url:
            return url

        status = str(data.get("status") or "").upper()
        if status not in PENDING_STATUSES:
            print(f"❌ fal request ended with status {status or 'unknown'}")
            return None

        if attempt < attempts - 1:
            await asyncio.sleep(interval)

    print(f"❌ fal result not ready after {attempts} polls")
    return None


# ---------- Client ----------

class ImageClient:
    """Generates images for one run and stores them in that run's directory."""

    def __init__(self, config: PipelineConfig, run_id: str):
        self.config = config
        self.run_id = run_id

    # -- backends --

    async def _openrouter(self, prompt: str) -> Optional[bytes]:
        return await generate_image_async(
            self.config.image_model,
            prompt,
            max_attempts=self.config.image_max_attempts,
            tag="ImageGeneratorOpenRouter",
            **self.config.llm_kwargs(),
        )

    def _fal_key(self) -> Optional[str]:
        return self.config.fal_api_key or os.getenv("FAL_KEY")

    async def _get_json(self, session: aiohttp.ClientSession, url: str, headers: Dict[str, str],
                        tag: str) -> Optional[Dict[str, Any]]:
        async with session.get(url, headers=headers) as response:
            status = response.status
            text = await response.text()
        log_llm_call(tag, url, f"HTTP {status}\n{text}", log_path=self.config.llm_log_path)
        try:
            data = json.loads(text)
        except ValueError:
            print(f"❌ {tag}: non-JSON body (HTTP {status})")
            return None
        return data if isinstance(data, dict) else None

    async def _download(self, session: aiohttp.ClientSession, url: str) -> Optional[bytes]:
        tag = "ImageGeneratorFalDownload"
        async with session.get(url) as response:
            status = response.status
            body = await response.read()
        log_llm_call(tag, url, f"HTTP {status}, {len(body)} bytes", log_path=self.config.llm_log_path)
        if status < 200 or status >= 300 or not body:
            print(f"❌ {tag}: HTTP {status}")
            return None
        return body

    async def _fal(self, prompt: str) -> Optional[bytes]:
        tag = "ImageGeneratorFal"
        key = self._fal_key()
        if not key:
            print(f"❌ {tag}: FAL_KEY not set, skipping image")
            return None

        headers = {"Authorization": f"Key {key}", "Content-Type": "application/json"}
        body = json.dumps({"prompt": prompt, "image_size": "square", "num_images": 1})
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(FAL_RUN_URL.format(model=self.config.fal_model),
                                    headers=headers, data=body) as response:
                status = response.status
                text = await response.text()
            log_llm_call(tag, body, f"HTTP {status}\n{text}", log_path=self.config.llm_log_path)

            if status < 200 or status >= 300:
                print(f"❌ {tag}: HTTP {status}")
                return None
            try:
                data = json.loads(text)
            except ValueError:
                print(f"❌ {tag}: non-JSON body")
                return None
            if not isinstance(data, dict):
                return None

            url = extract_fal_image_url(data) or extract_fal_image_url(data.get("response"))
            if not url and isinstance(data.get("response_url"), str):
                url = await poll_fal_result(
                    lambda target: self._get_json(session, target, headers, "ImageGeneratorFalPoll"),
                    data["response_url"],
                    attempts=self.config.fal_poll_attempts,
                    interval=self.config.fal_poll_interval_seconds,
                )
            if not url:
                return None
            return await self._download(session, url)

    async def _fal_client(self, prompt: str) -> Optional[bytes]:
        tag = "ImageGeneratorFalClient"
        key = self._fal_key()
        if not key:
            print(f"❌ {tag}: FAL_KEY not set, skipping image")
            return None

        arguments = {"prompt": prompt, "image_size": "square", "num_images": 1}

        def on_queue_update(update):
            if isinstance(update, fal_client.InProgress):
                for log in update.logs or []:
                    print(f"  [fal] {log.get('message', '')}")

        def subscribe():
            client = fal_client.SyncClient(key=key)
            return client.subscribe(
                self.config.fal_model,
                arguments=arguments,
                with_logs=True,
                on_queue_update=on_queue_update,
            )

        result = await asyncio.to_thread(subscribe)
        log_llm_call(tag, json.dumps(arguments), json.dumps(result, default=str),
                     log_path=self.config.llm_log_path)

        url = extract_fal_image_url(result) or extract_fal_image_url((result or {}).get("response"))
        if not url:
            return None
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self._download(session, url)

    async def _generate_bytes(self, prompt: str) -> Optional[bytes]:
        provider = self.config.image_provider
        if provider == ImageProvider.FAL:
            return await self._fal(prompt)
        if provider == ImageProvider.FAL_CLIENT:
            return await self._fal_client(prompt)
        return await self._openrouter(prompt)

    # -- public --

    async def generate(self, prompt: str, image_type: str, item_name: str) -> Optional[str]:
        """Generate and store one image; returns its path or None.

        Backend failures only affect this image. Cancellation propagates.
        """
        start = datetime.now()
        try:
            image_bytes = await self._generate_bytes(prompt)
        except Exception as e:
            print(f"  ❌ {image_type} '{item_name}': {str(e)[:200]}")
            log_llm_call(f"ImageGenerator:{image_type}", prompt, str(e), log_path=self.config.llm_log_path)
            return None

        if not image_bytes:
            print(f"  ❌ No image for {image_type} '{item_name}'")
            return None

        path = save_image_to_data(image_bytes, self.run_id, image_type, item_name, data_dir=self.config.data_dir)
        print(f"  ✅ Saved {image_type} '{item_name}' ({(datetime.now() - start).total_seconds():.1f}s): {path}")
        return path
