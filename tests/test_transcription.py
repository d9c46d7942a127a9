#!/usr/bin/env python3

import requests

from story_pipeline import transcription
from story_pipeline.transcription import GroqTranscriber

from conftest import FakeRequestsResponse


def test_transcribes_segments_in_order(temp_dir, monkeypatch):
    sent = []

    def post(url, headers=None, data=None, files=None, timeout=None):
        name = files["file"][0]
        sent.append((url, headers["Authorization"], data["model"], name))
        if name == "empty.m4a":
            return FakeRequestsResponse({"text": "   "})
        return FakeRequestsResponse({"text": f"text of {name}"})

    monkeypatch.setattr(transcription.requests, "post", post)
    paths = []
    for name in ("one.m4a", "empty.m4a", "two.m4a"):
        (temp_dir / name).write_bytes(b"audio")
        paths.append(str(temp_dir / name))

    transcriber = GroqTranscriber(api_key="gsk-test", log_path=str(temp_dir / "log.txt"))

    assert transcriber.transcribe_all(paths) == ["text of one.m4a", "text of two.m4a"]
    assert sent[0] == (transcription.GROQ_TRANSCRIPTION_URL, "Bearer gsk-test", "whisper-large-v3-turbo", "one.m4a")


def test_failures_yield_none(temp_dir, monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    audio = temp_dir / "a.m4a"
    audio.write_bytes(b"audio")
    log_path = str(temp_dir / "log.txt")

    assert GroqTranscriber(log_path=log_path).transcribe(str(audio)) is None

    monkeypatch.setattr(transcription.requests, "post",
                        lambda *a, **kw: FakeRequestsResponse({"error": "bad"}, status_code=401))
    assert GroqTranscriber(api_key="k", log_path=log_path).transcribe(str(audio)) is None

    def offline(*a, **kw):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(transcription.requests, "post", offline)
    assert GroqTranscriber(api_key="k", log_path=log_path).transcribe(str(audio)) is None
    assert GroqTranscriber(api_key="k", log_path=log_path).transcribe(str(temp_dir / "missing.m4a")) is None
