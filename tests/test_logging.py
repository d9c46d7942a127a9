#!/usr/bin/env python3

import requests

from openrouter_wrapper import llm, log_llm_call, redact_payload

from conftest import PNG_DATA_URL, json_content


def test_redacts_data_urls_and_base64_fields():
    text = f'{{"url": "{PNG_DATA_URL}", "image_base64": "QUJDRA=="}}'
    redacted = redact_payload(text)
    assert "data:image/png;base64,<base64 removed>" in redacted
    assert '"image_base64":"<base64 removed>"' in redacted
    assert "QUJDRA==" not in redacted


def test_redacts_json_escaped_data_urls():
    escaped = PNG_DATA_URL.replace("/", "\\/")
    text = f'{{"url": "{escaped}"}}'

    redacted = redact_payload(text)

    assert redacted == '{"url": "data:image\\/png;base64,<base64 removed>"}'


def test_log_entry_format(temp_dir):
    log_path = temp_dir / "llm_log.txt"
    log_llm_call("StoryStitcher", '{"prompt": "x"}', '{"ok": true}', log_path=str(log_path))
    log_llm_call("SceneBuilder", "request only", log_path=str(log_path))

    text = log_path.read_text(encoding="utf-8")
    assert "[StoryStitcher]" in text
    assert 'REQUEST:\n{"prompt": "x"}\nRESPONSE:\n{"ok": true}\n' in text
    assert "[SceneBuilder]" in text
    # entries are appended in order
    assert text.index("[StoryStitcher]") < text.index("[SceneBuilder]")


def test_calls_are_logged_by_tag(fake_llm, temp_dir):
    log_path = temp_dir / "llm_log.txt"
    fake_llm(lambda payload: json_content({"title": "Hi"}))

    llm("m", "Say hello", tag="CharacterExtraction", api_key="key", log_path=str(log_path))
    llm("m", "Not logged", tag="Quiet", api_key="key", log_path=str(log_path), logging=False)

    text = log_path.read_text(encoding="utf-8")
    assert "[CharacterExtraction]" in text
    assert "Say hello" in text
    assert "[Quiet]" not in text


def test_transport_error_is_logged_and_swallowed(fake_llm, temp_dir):
    log_path = temp_dir / "llm_log.txt"
    fake_llm(lambda payload: requests.ConnectionError("connection refused"))

    content, full_response, _ = llm("m", "prompt", tag="StoryStitcher", api_key="key", log_path=str(log_path))

    assert content is None and full_response is None
    assert "connection refused" in log_path.read_text(encoding="utf-8")
