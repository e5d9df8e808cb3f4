"""Shared pytest fixtures for tokenmeter tests."""

import json

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route


# Sample payload fixtures
@pytest.fixture
def chat_request_body():
    """A plain chat-completion request."""
    return {
        "model": "gpt-4o",
        "messages": [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "Hello world"},
        ],
    }


@pytest.fixture
def multimodal_request_body():
    """Request with a text part and an image part."""
    return {
        "model": "gpt-4o",
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "What is in this picture?"},
                    {
                        "type": "image_url",
                        "image_url": {"url": "https://example.com/cat.png", "detail": "high"},
                    },
                ],
            }
        ],
    }


@pytest.fixture
def completion_body():
    """Upstream chat completion with reported usage."""
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hi there, how can I help you today?"},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 15, "completion_tokens": 25, "total_tokens": 40},
    }


@pytest.fixture
def cached_completion_body(completion_body):
    """The same completion as served from a cache that zeroes usage."""
    body = json.loads(json.dumps(completion_body))
    body["usage"] = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    return body


class UpstreamRecorder:
    """Fake upstream ASGI app with a canned response.

    Records every request body it receives so tests can check what the
    middleware replayed.
    """

    def __init__(self, body=b"", status_code=200, headers=None, media_type="application/json"):
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode("utf-8")
        self.body = body
        self.status_code = status_code
        self.headers = headers or {}
        self.media_type = media_type
        self.received: list[bytes] = []
        self.calls = 0

    async def endpoint(self, request: Request) -> Response:
        self.calls += 1
        self.received.append(await request.body())
        return Response(
            content=self.body,
            status_code=self.status_code,
            headers=self.headers,
            media_type=self.media_type,
        )

    def app(self) -> Starlette:
        methods = ["GET", "POST", "PUT"]
        return Starlette(
            routes=[
                Route("/v1/chat/completions", self.endpoint, methods=methods),
                Route("/chat/completions", self.endpoint, methods=methods),
                Route("/v1/embeddings", self.endpoint, methods=methods),
                Route("/health", self.endpoint, methods=methods),
            ]
        )


@pytest.fixture
def make_upstream():
    """Factory for UpstreamRecorder instances."""
    return UpstreamRecorder
