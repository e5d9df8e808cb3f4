"""Parsing of chat-completion request and response bodies.

Message content arrives either as a plain string or as a list of typed
parts. It is resolved once, here, into ``PlainText`` or ``PartList`` so
the token counters never have to inspect raw JSON shapes.

Request parsing is strict enough to tell a chat-completion request from
anything else; content parsing is lenient and never fails.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from .exceptions import RequestParseError, ResponseParseError

# SSE framing used by streamed chat completions
_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"

# json.loads raises RecursionError on deeply nested (but well-formed) input
DECODE_ERRORS = (json.JSONDecodeError, UnicodeDecodeError, RecursionError)


# =============================================================================
# Content variants
# =============================================================================


@dataclass(frozen=True)
class TextPart:
    """A ``{"type": "text", "text": ...}`` content part."""

    text: str


@dataclass(frozen=True)
class ImagePart:
    """A ``{"type": "image_url", ...}`` content part."""

    url: str = ""
    detail: str = ""


@dataclass(frozen=True)
class UnknownPart:
    """Any part we do not count (audio, files, malformed entries)."""

    type: str = ""


ContentPart = Union[TextPart, ImagePart, UnknownPart]


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class PartList:
    parts: tuple[ContentPart, ...] = ()


MessageContent = Union[PlainText, PartList]


def parse_part(raw: Any) -> ContentPart:
    """Resolve one raw content part. Never raises."""
    if not isinstance(raw, dict):
        return UnknownPart()

    part_type = raw.get("type")
    if part_type == "text":
        text = raw.get("text")
        if isinstance(text, str):
            return TextPart(text)
        return UnknownPart("text")
    if part_type == "image_url":
        image = raw.get("image_url")
        if isinstance(image, dict):
            return ImagePart(
                url=str(image.get("url") or ""),
                detail=str(image.get("detail") or ""),
            )
        return ImagePart(url=image if isinstance(image, str) else "")
    return UnknownPart(part_type if isinstance(part_type, str) else "")


def parse_content(raw: Any) -> MessageContent | None:
    """Resolve a message ``content`` value.

    Returns None for absent content and for shapes that are neither a
    string nor a list (those count as zero tokens).
    """
    if isinstance(raw, str):
        return PlainText(raw)
    if isinstance(raw, list):
        return PartList(tuple(parse_part(p) for p in raw))
    return None


# =============================================================================
# Request envelope
# =============================================================================


@dataclass(frozen=True)
class ToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: MessageContent | None = None
    name: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str = ""


@dataclass(frozen=True)
class ChatRequest:
    """Structured view of a chat-completion request body."""

    model: str
    messages: tuple[ChatMessage, ...] = ()
    stream: bool = False


def _parse_tool_calls(raw: Any) -> tuple[ToolCall, ...]:
    if not isinstance(raw, list):
        return ()
    calls = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        function = item.get("function")
        if not isinstance(function, dict):
            function = {}
        calls.append(
            ToolCall(
                id=_str_or_empty(item.get("id")),
                name=_str_or_empty(function.get("name")),
                arguments=_str_or_empty(function.get("arguments")),
            )
        )
    return tuple(calls)


def _str_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _parse_message(raw: Any, index: int) -> ChatMessage:
    if not isinstance(raw, dict):
        raise RequestParseError("Message is not an object", details={"index": index})
    role = raw.get("role", "")
    if not isinstance(role, str):
        raise RequestParseError("Message role is not a string", details={"index": index})
    return ChatMessage(
        role=role,
        content=parse_content(raw.get("content")),
        name=_str_or_empty(raw.get("name")),
        tool_calls=_parse_tool_calls(raw.get("tool_calls")),
        tool_call_id=_str_or_empty(raw.get("tool_call_id")),
    )


def parse_request(body: bytes) -> ChatRequest:
    """Parse a chat-completion request body.

    Raises:
        RequestParseError: If the body is not JSON, not an object, or its
            ``model``/``messages`` fields have the wrong type.
    """
    try:
        data = json.loads(body)
    except DECODE_ERRORS as e:
        raise RequestParseError("Request body is not valid JSON", details={"error": e}) from e

    if not isinstance(data, dict):
        raise RequestParseError(
            "Request body is not a JSON object", details={"type": type(data).__name__}
        )

    model = data.get("model", "")
    if not isinstance(model, str):
        raise RequestParseError("Request model is not a string")

    raw_messages = data.get("messages")
    if raw_messages is None:
        raw_messages = []
    elif not isinstance(raw_messages, list):
        raise RequestParseError("Request messages is not a list")

    return ChatRequest(
        model=model,
        messages=tuple(_parse_message(m, i) for i, m in enumerate(raw_messages)),
        stream=data.get("stream") is True,
    )


# =============================================================================
# Response envelope
# =============================================================================


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ChatCompletion:
    """Structured view of a chat-completion response body.

    ``contents`` holds the resolved content of every choice, taken from
    ``message`` (or ``delta`` for streamed chunks). ``indexes`` is parallel
    to it and holds each choice's ``index``.
    """

    usage: Usage = field(default_factory=Usage)
    contents: tuple[MessageContent | None, ...] = ()
    indexes: tuple[int, ...] = ()


def _usage_field(usage: dict[str, Any], name: str) -> int:
    value = usage.get(name)
    if value is None:
        return 0
    # bool is an int subclass but never a token count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ResponseParseError(
            "Usage field is not an integer", details={"field": name, "value": value}
        )
    return value


def _parse_usage(raw: Any) -> Usage:
    if raw is None:
        return Usage()
    if not isinstance(raw, dict):
        raise ResponseParseError("Usage is not an object")
    return Usage(
        prompt_tokens=_usage_field(raw, "prompt_tokens"),
        completion_tokens=_usage_field(raw, "completion_tokens"),
        total_tokens=_usage_field(raw, "total_tokens"),
    )


def _parse_choices(
    raw_choices: Any, strict: bool = True
) -> tuple[tuple[MessageContent | None, ...], tuple[int, ...]]:
    """Collect the content and index of every choice.

    With ``strict=False`` malformed choices are skipped instead of
    raising ResponseParseError.
    """
    if raw_choices is None:
        return (), ()
    if not isinstance(raw_choices, list):
        if strict:
            raise ResponseParseError("Choices is not a list")
        return (), ()

    contents = []
    indexes = []
    for position, choice in enumerate(raw_choices):
        if not isinstance(choice, dict):
            if strict:
                raise ResponseParseError("Choice is not an object")
            continue
        message = choice.get("message")
        if not isinstance(message, dict):
            message = choice.get("delta")
        if isinstance(message, dict):
            index = choice.get("index")
            if isinstance(index, bool) or not isinstance(index, int):
                index = position
            contents.append(parse_content(message.get("content")))
            indexes.append(index)
    return tuple(contents), tuple(indexes)


def completion_from_json(data: Any) -> ChatCompletion:
    if not isinstance(data, dict):
        raise ResponseParseError(
            "Response body is not a JSON object", details={"type": type(data).__name__}
        )
    contents, indexes = _parse_choices(data.get("choices"))
    return ChatCompletion(
        usage=_parse_usage(data.get("usage")),
        contents=contents,
        indexes=indexes,
    )


def parse_completion(body: bytes) -> ChatCompletion:
    """Parse a (non-streamed) chat-completion response body.

    Raises:
        ResponseParseError: If the body does not have the expected shape.
    """
    try:
        data = json.loads(body)
    except DECODE_ERRORS as e:
        raise ResponseParseError("Response body is not valid JSON", details={"error": e}) from e
    return completion_from_json(data)


def salvage_completion(body: bytes) -> ChatCompletion | None:
    """Best-effort read of the choices of a body ``parse_completion`` rejected.

    ``usage`` is ignored and malformed choices are skipped. Returns None
    when the body is not a JSON object.
    """
    try:
        data = json.loads(body)
    except DECODE_ERRORS:
        return None
    if not isinstance(data, dict):
        return None
    contents, indexes = _parse_choices(data.get("choices"), strict=False)
    return ChatCompletion(contents=contents, indexes=indexes)


def parse_stream_chunks(body: bytes) -> list[ChatCompletion]:
    """Parse the ``data:`` events of a streamed chat completion.

    Events that fail to decode are skipped, as is the ``[DONE]`` sentinel.
    Returns an empty list when the body is not an event stream at all.
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return []

    chunks: list[ChatCompletion] = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith(_SSE_DATA_PREFIX):
            continue
        payload = line[len(_SSE_DATA_PREFIX) :].strip()
        if not payload or payload == _SSE_DONE:
            continue
        try:
            chunks.append(completion_from_json(json.loads(payload)))
        except (*DECODE_ERRORS, ResponseParseError):
            continue
    return chunks
