"""
Pipeline configuration.

Settings are read once from the environment (``.env`` is loaded with python-dotenv)
into a PipelineConfig that is handed to the executor and every step.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_TEXT_MODEL = "mistralai/mistral-nemo"
DEFAULT_IMAGE_MODEL = "google/gemini-2.5-flash-image-preview"
DEFAULT_FAL_MODEL = "fal-ai/flux-1/schnell"


class ImageStyle(Enum):
    PHOTOREALISTIC = "photorealistic"
    CARTOON = "cartoon"
    MANGA = "manga"

    @property
    def prompt(self) -> str:
        return self.value


class ImageProvider(Enum):
    OPENROUTER = "openrouter"
    FAL = "fal"
    FAL_CLIENT = "fal_client"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_enum(enum_cls, name: str, default):
    value = (os.getenv(name) or "").strip().lower()
    for member in enum_cls:
        if member.value == value:
            return member
    return default


class PipelineConfig(BaseModel):
    openrouter_api_key: Optional[str] = None
    fal_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None

    text_model: str = DEFAULT_TEXT_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    fal_model: str = DEFAULT_FAL_MODEL
    use_structured_outputs: bool = True

    image_style: ImageStyle = ImageStyle.PHOTOREALISTIC
    image_provider: ImageProvider = ImageProvider.OPENROUTER
    generate_character_images: bool = True
    generate_environment_images: bool = True
    generate_scene_images: bool = True
    forced_language: Optional[str] = None

    data_dir: str = "data"
    llm_log_path: str = "llm_log.txt"
    save_checkpoints: bool = False

    image_max_attempts: int = Field(5, ge=1)
    fal_poll_attempts: int = Field(10, ge=1)
    fal_poll_interval_seconds: float = Field(1.0, ge=0)
    image_concurrency: int = Field(3, ge=1)
    request_timeout_seconds: float = Field(120, gt=0)

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """Build a config from environment variables; keyword overrides win."""
        load_dotenv()
        values = dict(
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
            fal_api_key=os.getenv("FAL_KEY") or None,
            groq_api_key=os.getenv("GROQ_API_KEY") or None,
            text_model=os.getenv("STORY_TEXT_MODEL") or DEFAULT_TEXT_MODEL,
            image_model=os.getenv("STORY_IMAGE_MODEL") or DEFAULT_IMAGE_MODEL,
            fal_model=os.getenv("STORY_FAL_MODEL") or DEFAULT_FAL_MODEL,
            use_structured_outputs=_env_flag("STORY_STRUCTURED_OUTPUTS", True),
            image_style=_env_enum(ImageStyle, "STORY_IMAGE_STYLE", ImageStyle.PHOTOREALISTIC),
            image_provider=_env_enum(ImageProvider, "STORY_IMAGE_PROVIDER", ImageProvider.OPENROUTER),
            generate_character_images=_env_flag("STORY_CHARACTER_IMAGES", True),
            generate_environment_images=_env_flag("STORY_ENVIRONMENT_IMAGES", True),
            generate_scene_images=_env_flag("STORY_SCENE_IMAGES", True),
            forced_language=(os.getenv("STORY_FORCED_LANGUAGE") or "").strip() or None,
            data_dir=os.getenv("STORY_DATA_DIR") or "data",
            llm_log_path=os.getenv("LLM_LOG_PATH") or "llm_log.txt",
        )
        values.update(overrides)
        return cls(**values)

    def llm_kwargs(self) -> dict:
        """Keyword arguments shared by every text call."""
        return {
            "api_key": self.openrouter_api_key,
            "timeout": self.request_timeout_seconds,
            "log_path": self.llm_log_path,
        }
