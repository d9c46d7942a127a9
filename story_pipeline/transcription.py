"""
Speech-to-text for recorded story segments.

Only the remote Groq Whisper backend is implemented here; on-device recognition
plugs in through the same Transcriber interface.
"""

import os
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from openrouter_wrapper import log_llm_call

GROQ_TRANSCRIPTION_URL = "https://api.groq.com/openai/v1/audio/transcriptions"
GROQ_WHISPER_MODEL = "whisper-large-v3-turbo"


class Transcriber(ABC):
    @abstractmethod
    def transcribe(self, audio_path: str) -> Optional[str]:
        """Text of one audio segment, or None."""

    def transcribe_all(self, audio_paths: List[str]) -> List[str]:
        """Transcribe segments in order, skipping the ones that produced no text."""
        texts = []
        for path in audio_paths:
            text = self.transcribe(path)
            if text and text.strip():
                texts.append(text.strip())
            else:
                print(f"⚠️  No transcription for {path}")
        return texts


class GroqTranscriber(Transcriber):
    def __init__(self, api_key: Optional[str] = None, model: str = GROQ_WHISPER_MODEL,
                 timeout: float = 120, log_path: Optional[str] = None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.log_path = log_path

    def transcribe(self, audio_path: str) -> Optional[str]:
        tag = "GroqTranscriber"
        api_key = self.api_key or os.getenv("GROQ_API_KEY")
        if not api_key:
            print(f"❌ {tag}: GROQ_API_KEY not set")
            return None

        try:
            with open(audio_path, "rb") as audio:
                response = requests.post(
                    GROQ_TRANSCRIPTION_URL,
                    headers={"Authorization": f"Bearer {api_key}"},
                    data={"model": self.model},
                    files={"file": (os.path.basename(audio_path), audio, "audio/mp4")},
                    timeout=self.timeout,
                )
        except (OSError, requests.RequestException) as e:
            print(f"❌ {tag}: {e}")
            log_llm_call(tag, audio_path, str(e), log_path=self.log_path)
            return None

        log_llm_call(tag, f"{audio_path} ({self.model})", response.text, log_path=self.log_path)
        if not response.ok:
            print(f"❌ {tag}: HTTP {response.status_code}")
            return None

        try:
            text = response.json().get("text")
        except (ValueError, AttributeError):
            return None
        return text if isinstance(text, str) else None
