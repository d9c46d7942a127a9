"""
Pytest Configuration and Fixtures

Shared fixtures for all tests. No test touches the network: requests.post/get and
aiohttp.ClientSession are replaced with scripted fakes.
"""

import base64
import json
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiohttp
import pytest
import requests

import openrouter_wrapper
from story_pipeline.config import PipelineConfig

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


# ---------- Response builders ----------

def chat_response(content: Any = None, parsed: Any = None, images: Optional[List[Dict]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if parsed is not None:
        message["parsed"] = parsed
    if images is not None:
        message["images"] = images
    return {"choices": [{"message": message}]}


def json_content(value: Any) -> Dict[str, Any]:
    return chat_response(content=json.dumps(value))


def image_response() -> Dict[str, Any]:
    return chat_response(content="", images=[{"image_url": {"url": PNG_DATA_URL}}])


def prompt_text(payload: Dict[str, Any]) -> str:
    """Text of the first user message of a chat payload."""
    for message in payload.get("messages", []):
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, list):
            return "".join(part.get("text", "") for part in content if isinstance(part, dict))
        return content or ""
    return ""


def schema_name(payload: Dict[str, Any]) -> Optional[str]:
    return (payload.get("response_format") or {}).get("json_schema", {}).get("name")


# ---------- requests fake ----------

class FakeRequestsResponse:
    def __init__(self, body: Any = None, status_code: int = 200, text: Optional[str] = None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(body)
        self.ok = 200 <= status_code < 300

    def json(self):
        return json.loads(self.text)


class ScriptedLLM:
    """Stands in for requests.post against the chat endpoint.

    `responder` receives the decoded payload and returns a response body dict, a
    FakeRequestsResponse, or an exception instance to raise.
    """

    def __init__(self, responder: Callable[[Dict[str, Any]], Any]):
        self.responder = responder
        self.payloads: List[Dict[str, Any]] = []

    def __call__(self, url=None, headers=None, data=None, timeout=None, **kwargs):
        payload = json.loads(data.decode("utf-8") if isinstance(data, bytes) else data)
        self.payloads.append(payload)
        result = self.responder(payload)
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, FakeRequestsResponse):
            return result
        return FakeRequestsResponse(result)

    def prompts(self) -> List[str]:
        return [prompt_text(p) for p in self.payloads]


@pytest.fixture
def fake_llm(monkeypatch):
    """Install a scripted chat endpoint; call with a responder function."""
    def install(responder) -> ScriptedLLM:
        scripted = ScriptedLLM(responder)
        monkeypatch.setattr(openrouter_wrapper.requests, "post", scripted)
        return scripted
    return install


# ---------- aiohttp fake ----------

class FakeAiohttpResponse:
    def __init__(self, status: int = 200, body: Any = None, raw: Optional[bytes] = None):
        self.status = status
        self._raw = raw if raw is not None else json.dumps(body).encode("utf-8")

    async def text(self):
        return self._raw.decode("utf-8", errors="replace")

    async def read(self):
        return self._raw

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeAiohttpSession:
    """Routes every request through `handler(method, url, kwargs)`."""

    def __init__(self, handler, calls: List):
        self.handler = handler
        self.calls = calls

    def _request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        result = self.handler(method, url, kwargs)
        if isinstance(result, BaseException):
            raise result
        return result

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def fake_http(monkeypatch):
    """Replace aiohttp.ClientSession; returns the list of recorded calls."""
    def install(handler) -> List:
        calls: List = []
        monkeypatch.setattr(aiohttp, "ClientSession", lambda *a, **kw: FakeAiohttpSession(handler, calls))
        return calls
    return install


# ---------- Common fixtures ----------

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def config(temp_dir) -> PipelineConfig:
    return PipelineConfig(
        openrouter_api_key="test-key",
        fal_api_key="fal-test-key",
        data_dir=str(temp_dir / "data"),
        llm_log_path=str(temp_dir / "llm_log.txt"),
        fal_poll_interval_seconds=0,
    )


@pytest.fixture
def no_network(monkeypatch):
    """Fail loudly if a test reaches a real HTTP client."""
    def refuse(*args, **kwargs):
        raise AssertionError("unexpected network call")
    monkeypatch.setattr(requests, "post", refuse)
    monkeypatch.setattr(requests, "get", refuse)
