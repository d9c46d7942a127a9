import requests
import json
import os
import re
import base64
import asyncio
import aiohttp
from datetime import datetime
from enum import Enum
from typing import Optional, Union, List, Tuple, Dict, Any, Callable, Sequence

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_LOG_PATH = "llm_log.txt"

IMAGE_RETRY_MESSAGE = (
    "Please try a different composition emphasizing fresh framing, varied focal points, "
    "and an alternative mood while staying true to the prompt."
)

_DATA_URL_PATTERN = re.compile(r"(data:image\\?/[^;]+;base64,)[A-Za-z0-9+/=\\\r\n]+")
_IMAGE_BASE64_PATTERN = re.compile(r'"image_base64"\s*:\s*"[A-Za-z0-9+/=\\\r\n]+"')


# ---------- Diagnostic Log ----------

def redact_payload(text: Optional[str]) -> Optional[str]:
    """Strip inline image data from a request/response body before it is logged."""
    if not text:
        return text
    text = _DATA_URL_PATTERN.sub(lambda m: m.group(1) + "<base64 removed>", text)
    return _IMAGE_BASE64_PATTERN.sub('"image_base64":"<base64 removed>"', text)


def _count_tokens_in_messages(messages: List[Dict[str, Any]]) -> int:
    """Rough token count estimation for input messages"""
    total_chars = 0
    for msg in messages:
        content = msg.get("content", "")
        if isinstance(content, str):
            total_chars += len(content)
        elif isinstance(content, list):
            for item in content:
                if isinstance(item, dict) and item.get("type") == "text":
                    total_chars += len(item.get("text", ""))
    # Rough estimation: ~4 characters per token
    return total_chars // 4


def log_llm_call(
    tag: str,
    request: Optional[str],
    response: Optional[str] = None,
    log_path: Optional[str] = None,
    start_time: Optional[datetime] = None,
    tokens_in: Optional[int] = None,
) -> None:
    """Append one request/response pair to the diagnostic LLM log.

    Entries are keyed by tag (usually the pipeline step or client name). Image payloads
    are redacted so the log stays readable.
    """
    now = datetime.now()
    header = f"{now.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]} [{tag}]"
    if start_time is not None:
        header += f" | Duration: {(now - start_time).total_seconds():.2f}s"
    if tokens_in is not None:
        header += f" | Tokens In: {tokens_in}"

    entry = f"{header}\nREQUEST:\n{redact_payload(request) or ''}\n"
    if response is not None:
        entry += f"RESPONSE:\n{redact_payload(response)}\n"
    entry += "\n"

    path = log_path or os.getenv("LLM_LOG_PATH", DEFAULT_LOG_PATH)
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError as e:
        print(f"⚠️  Could not write LLM log ({path}): {e}")


# ---------- Request Building ----------

def _build_messages(
    context: Optional[Union[str, List[Dict[str, Any]]]],
    text: str,
) -> List[Dict[str, Any]]:
    """Build message list for API request.

    Args:
        context: System message (string) or conversation history (list)
        text: User's text prompt

    Returns:
        List of message dicts ready for API
    """
    messages = []

    if context:
        if isinstance(context, str):
            messages.append({"role": "system", "content": context})
        elif isinstance(context, list):
            messages.extend(context)

    messages.append({"role": "user", "content": [{"type": "text", "text": text}]})
    return messages


def _build_payload(
    model: str,
    messages: List[Dict[str, Any]],
    schema_name: Optional[str] = None,
    schema: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build API request payload.

    Args:
        model: Model identifier
        messages: Message list from _build_messages()
        schema_name: Logical purpose of the structured output ("story", "assets", ...)
        schema: Optional JSON schema; when given the response is schema constrained

    Returns:
        Payload dict ready for API request
    """
    payload = {"model": model, "messages": messages}

    if schema is not None:
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": schema_name or "response",
                "schema": schema,
            },
        }

    return payload


# ---------- Response Decoding ----------

class DecodeFailure(str, Enum):
    NO_CHOICES = "no_choices"
    BLANK_CONTENT = "blank_content"
    MALFORMED_JSON = "malformed_json"
    TYPE_MISMATCH = "type_mismatch"


TRY_NEXT = object()

DecodeStrategy = Callable[[Dict[str, Any]], Any]


def first_message(full_response: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return choices[0].message, or None when the response carries no choices."""
    if not isinstance(full_response, dict):
        return None
    choices = full_response.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    return message if isinstance(message, dict) else None


def message_text(message: Optional[Dict[str, Any]]) -> Optional[str]:
    """Free-text content of a message; list content is joined from its text parts."""
    if not message:
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        joined = "".join(
            item.get("text") or ""
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        )
        return joined or None
    return None


def _strip_code_fence(content: str) -> str:
    content = content.strip()
    if "```json" in content:
        content = content.split("```json", 1)[1].split("```", 1)[0]
    elif content.startswith("```"):
        content = content.strip("`").strip()
    return content.strip()


def _load_content_json(message: Dict[str, Any]) -> Any:
    content = message_text(message)
    if not content or not content.strip():
        return TRY_NEXT
    try:
        return json.loads(_strip_code_fence(content))
    except ValueError:
        return TRY_NEXT


def _parsed_array(message: Dict[str, Any]) -> Any:
    parsed = message.get("parsed")
    return parsed if isinstance(parsed, list) else TRY_NEXT


def _parsed_object_as_array(message: Dict[str, Any]) -> Any:
    parsed = message.get("parsed")
    return [parsed] if isinstance(parsed, dict) else TRY_NEXT


def _content_as_array(message: Dict[str, Any]) -> Any:
    value = _load_content_json(message)
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        # {"characters": [...]} style wrappers
        lists = [v for v in value.values() if isinstance(v, list)]
        if len(value) == 1 and len(lists) == 1:
            return lists[0]
        return [value]
    return TRY_NEXT


def _parsed_object(message: Dict[str, Any]) -> Any:
    parsed = message.get("parsed")
    return parsed if isinstance(parsed, dict) else TRY_NEXT


def _parsed_array_first(message: Dict[str, Any]) -> Any:
    parsed = message.get("parsed")
    if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
        return parsed[0]
    return TRY_NEXT


def _parsed_string_object(message: Dict[str, Any]) -> Any:
    parsed = message.get("parsed")
    if not isinstance(parsed, str):
        return TRY_NEXT
    try:
        value = json.loads(_strip_code_fence(parsed))
    except ValueError:
        return TRY_NEXT
    return value if isinstance(value, dict) else TRY_NEXT


def _content_as_object(message: Dict[str, Any]) -> Any:
    value = _load_content_json(message)
    if isinstance(value, dict):
        return value
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return TRY_NEXT


ARRAY_STRATEGIES: Tuple[DecodeStrategy, ...] = (_parsed_array, _parsed_object_as_array, _content_as_array)
OBJECT_STRATEGIES: Tuple[DecodeStrategy, ...] = (
    _parsed_object,
    _parsed_array_first,
    _parsed_string_object,
    _content_as_object,
)


def _content_failure_reason(message: Dict[str, Any]) -> DecodeFailure:
    content = message_text(message)
    if not content or not content.strip():
        return DecodeFailure.BLANK_CONTENT
    try:
        json.loads(_strip_code_fence(content))
    except ValueError:
        return DecodeFailure.MALFORMED_JSON
    return DecodeFailure.TYPE_MISMATCH


def decode_structured(
    full_response: Optional[Dict[str, Any]],
    expect: str = "object",
    tag: str = "llm",
    strategies: Optional[Sequence[DecodeStrategy]] = None,
    logging: bool = True,
    log_path: Optional[str] = None,
) -> Optional[Union[Dict[str, Any], List[Any]]]:
    """Decode a chat completion through an ordered list of strategies.

    Each strategy returns a decoded value or TRY_NEXT. For arrays the order is the
    pre-parsed array, a pre-parsed object wrapped into a one element array, then the
    content field parsed as JSON. Objects follow the same idea. Nothing here raises:
    when every strategy passes, the failure reason is logged and None is returned.

    Args:
        full_response: Decoded JSON body of the chat completion
        expect: "array" or "object"
        tag: Log tag of the calling step
        strategies: Override of the default strategy chain
        logging: Report a failure on stdout and in the diagnostic log; callers
            with their own fallback for undecodable content pass False

    Returns:
        Decoded dict/list, or None
    """
    if strategies is None:
        strategies = ARRAY_STRATEGIES if expect == "array" else OBJECT_STRATEGIES

    message = first_message(full_response)
    if message is None:
        reason = DecodeFailure.NO_CHOICES
    else:
        for strategy in strategies:
            result = strategy(message)
            if result is not TRY_NEXT:
                return result
        reason = _content_failure_reason(message)

    if logging:
        print(f"⚠️  {tag}: structured response not usable ({reason.value})")
        preview = message_text(message) if message else None
        log_llm_call(tag, f"decode_failure: {reason.value}", preview or "", log_path=log_path)
    return None


def _extract_image_url(full_response: Dict[str, Any]) -> Optional[str]:
    """Extract inline image data from an API response.

    Handles multiple response formats:
    - {"images": [{"image_url": {"url": "data:image/..."}}]}
    - {"images": [{"image_url": "data:image/..."}]}
    - content list with {"image_base64": "..."}
    - Content field with data URL

    Returns:
        Image data URL string or None if not found
    """
    message = first_message(full_response)
    if message is None:
        return None

    images = message.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        image_url_field = images[0].get("image_url")
        if isinstance(image_url_field, dict):
            image_url_field = image_url_field.get("url")
        if isinstance(image_url_field, str) and image_url_field:
            return image_url_field

    content = message.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        encoded = content[0].get("image_base64")
        if isinstance(encoded, str) and encoded:
            return f"data:image/png;base64,{encoded}"
    if isinstance(content, str) and content.startswith("data:image/"):
        return content

    return None


def _decode_image_data(image_data_url: str) -> bytes:
    """Decode base64 image data from data URL.

    Raises:
        ValueError: If decoding fails
    """
    try:
        base64_data = image_data_url.split("base64,", 1)[1]
        return base64.b64decode(base64_data)
    except (IndexError, ValueError) as e:
        raise ValueError(f"Failed to decode base64 image data: {str(e)}")


# ---------- Calls ----------

def _headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def llm(
    model: str,
    text: str,
    context: Optional[Union[str, List[Dict[str, Any]]]] = None,
    schema: Optional[Dict[str, Any]] = None,
    schema_name: Optional[str] = None,
    tag: str = "llm",
    api_key: Optional[str] = None,
    timeout: float = 120,
    logging: bool = True,
    log_path: Optional[str] = None,
) -> Tuple[Optional[str], Optional[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    OpenRouter chat completion call

    A missing key, a transport error, a non-2xx status or a non-JSON body all give
    (None, None, messages). Nothing is retried here.

    Args:
        model: The model to use (e.g., "mistralai/mistral-nemo")
        text: The main text prompt
        context: Optional context/system message (string) or list of message history
        schema: Optional JSON schema for structured output
        schema_name: Name sent with the schema ("story", "assets", "scenes", ...)
        tag: Diagnostic log tag
        api_key: OpenRouter key; falls back to OPENROUTER_API_KEY
        logging: If True (default), write the request/response pair to the LLM log

    Returns:
        Tuple of (message_content, full_response, message_history)
    """
    start_time = datetime.now()
    messages = _build_messages(context, text)

    api_key = api_key or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
        print(f"❌ {tag}: OPENROUTER_API_KEY not set, skipping call")
        if logging:
            log_llm_call(tag, text, "missing OpenRouter API key", log_path=log_path)
        return None, None, messages

    payload = _build_payload(model, messages, schema_name, schema)
    request_body = json.dumps(payload, ensure_ascii=False)

    try:
        response = requests.post(
            url=OPENROUTER_URL,
            headers=_headers(api_key),
            data=request_body.encode("utf-8"),
            timeout=timeout,
        )
    except requests.RequestException as e:
        print(f"❌ {tag}: request failed: {str(e)[:200]}")
        if logging:
            log_llm_call(tag, text, str(e), log_path=log_path, start_time=start_time)
        return None, None, messages

    if logging:
        log_llm_call(
            tag, request_body, response.text, log_path=log_path,
            start_time=start_time, tokens_in=_count_tokens_in_messages(messages),
        )

    if not response.ok:
        print(f"❌ {tag}: HTTP {response.status_code}")
        return None, None, messages

    try:
        full_response = response.json()
    except ValueError:
        print(f"❌ {tag}: non-JSON response body (status {response.status_code})")
        return None, None, messages

    message = first_message(full_response)
    updated_messages = messages.copy()
    updated_messages.append(message or {"role": "assistant", "content": ""})

    return message_text(message), full_response, updated_messages


def structured_llm(
    model: str,
    text: str,
    schema_name: str,
    schema: Dict[str, Any],
    expect: str = "object",
    use_structured_outputs: bool = True,
    tag: str = "llm",
    **kwargs,
) -> Optional[Union[Dict[str, Any], List[Any]]]:
    """Schema-constrained call followed by the fallback decode chain.

    With use_structured_outputs off the schema is not sent, but the response is still
    decoded the same way (providers that ignore the directive land in the content
    fallback anyway).
    """
    _, full_response, _ = llm(
        model=model,
        text=text,
        schema=schema if use_structured_outputs else None,
        schema_name=schema_name,
        tag=tag,
        **kwargs,
    )
    if full_response is None:
        return None
    return decode_structured(
        full_response, expect=expect, tag=tag,
        logging=kwargs.get("logging", True), log_path=kwargs.get("log_path"),
    )


async def llm_async(
    model: str,
    messages: List[Dict[str, Any]],
    tag: str = "async",
    api_key: Optional[str] = None,
    timeout: float = 120,
    logging: bool = True,
    log_path: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Async chat completion over an explicit message history.

    Returns the decoded response body, or None on missing key, transport error,
    non-2xx status or a non-JSON body.
    """
    start_time = datetime.now()
    api_key = api_key or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
        print(f"❌ {tag}: OPENROUTER_API_KEY not set, skipping call")
        return None

    request_body = json.dumps(_build_payload(model, messages), ensure_ascii=False)

    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.post(
                OPENROUTER_URL,
                headers=_headers(api_key),
                data=request_body.encode("utf-8"),
            ) as response:
                status = response.status
                response_text = await response.text()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        print(f"❌ {tag}: request failed: {str(e)[:200]}")
        if logging:
            log_llm_call(tag, request_body, str(e), log_path=log_path, start_time=start_time)
        return None

    if logging:
        log_llm_call(
            tag, request_body, response_text, log_path=log_path,
            start_time=start_time, tokens_in=_count_tokens_in_messages(messages),
        )

    if status < 200 or status >= 300:
        print(f"❌ {tag}: HTTP {status}")
        return None

    try:
        return json.loads(response_text)
    except ValueError:
        print(f"❌ {tag}: non-JSON response body (status {status})")
        return None


async def generate_image_async(
    model: str,
    text: str,
    max_attempts: int = 5,
    retry_message: str = IMAGE_RETRY_MESSAGE,
    tag: str = "ImageGeneratorOpenRouter",
    **kwargs,
) -> Optional[bytes]:
    """
    Ask a chat model for an inline base64 image.

    When a response carries no image, a corrective user message is appended to the
    running history and the whole conversation is sent again, up to max_attempts
    requests in total. The original request always stays first in the history.
    An HTTP failure ends the loop immediately.

    Returns:
        Decoded image bytes, or None
    """
    messages = _build_messages(None, text)

    for attempt in range(max_attempts):
        full_response = await llm_async(model, list(messages), tag=tag, **kwargs)
        if full_response is None:
            return None

        image_data_url = _extract_image_url(full_response)
        if image_data_url:
            try:
                return _decode_image_data(image_data_url)
            except ValueError as e:
                print(f"⚠️  {tag}: {e}")

        print(f"⚠️  No image data in response (attempt {attempt + 1}/{max_attempts})")
        if attempt < max_attempts - 1:
            messages.append({"role": "user", "content": [{"type": "text", "text": retry_message}]})

    return None
