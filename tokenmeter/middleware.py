"""ASGI middleware that reports token usage as response headers.

Drop-in for FastAPI, Starlette, LiteLLM proxy, or any ASGI app that
serves OpenAI-style chat completions:

    from tokenmeter import TokenCountMiddleware

    app.add_middleware(TokenCountMiddleware)

    # Custom header names
    app.add_middleware(
        TokenCountMiddleware,
        request_token_header="X-Prompt-Tokens",
        response_token_header="X-Completion-Tokens",
    )

Only ``POST`` requests whose path contains ``/chat/completions`` are
accounted; everything else passes straight through. For accounted
requests the response is buffered until the token counts are known, then
written to the client in one go.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .accounting import AccountingResult, TokenAccountant
from .capture import ResponseCapture, flush_response
from .config import TokenCounterConfig, resolve_config
from .exceptions import RequestParseError
from .parser import ChatRequest, parse_request
from .tokenizers import TokenCounter

logger = logging.getLogger(__name__)

_ACCOUNTED_METHOD = "POST"


class _BodyReadError(Exception):
    """Client went away before the request body was complete."""


class TokenCountMiddleware:
    """ASGI middleware adding token-count headers to chat completions.

    Response headers set on accounted requests:
    - X-Request-Token-Count: prompt-side tokens
    - X-Response-Token-Count: completion-side tokens

    A header is omitted when there is nothing trustworthy to report for
    that side (e.g. the upstream reported 0 and the response was not a
    cache hit).

    Args:
        app: The wrapped ASGI application (the upstream handler).
        config: Fully resolved settings. Takes precedence over the
            individual keyword settings below.
        counter: Token counter for the estimation paths.
        request_token_header: Header name for prompt-side tokens.
        response_token_header: Header name for completion-side tokens.
        cache_status_header: Header carrying the upstream cache signal.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: TokenCounterConfig | None = None,
        counter: TokenCounter | None = None,
        request_token_header: str | None = None,
        response_token_header: str | None = None,
        cache_status_header: str | None = None,
    ) -> None:
        self.app = app
        self.config = config or resolve_config(
            request_token_header=request_token_header,
            response_token_header=response_token_header,
            cache_status_header=cache_status_header,
        )
        self.accountant = TokenAccountant(self.config, counter)

    def in_scope(self, scope: Scope) -> bool:
        """Whether a request should be accounted at all."""
        if scope["type"] != "http":
            return False
        return (
            scope.get("method", "GET") == _ACCOUNTED_METHOD
            and self.config.route_fragment in scope.get("path", "")
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self.in_scope(scope):
            if scope["type"] == "http":
                logger.debug(
                    "Token counter bypassing %s %s", scope.get("method"), scope.get("path")
                )
            await self.app(scope, receive, send)
            return

        body_chunks: list[bytes] = []
        try:
            await self._read_body(receive, body_chunks)
        except _BodyReadError:
            logger.warning(
                "Token counter: client disconnected while sending body to %s", scope.get("path")
            )
            await self.app(scope, _replay(b"".join(body_chunks), receive), send)
            return

        full_body = b"".join(body_chunks)
        replay_receive = _replay(full_body, receive)

        try:
            request = parse_request(full_body)
        except RequestParseError as e:
            logger.warning("Token counter: failed to parse chat request: %s", e)
            await self.app(scope, replay_receive, send)
            return

        capture = ResponseCapture()
        await self.app(scope, replay_receive, capture)
        captured = capture.seal()

        try:
            result = self.accountant.account(request, captured)
            final = result.response
            self._log_result(request, result)
        except Exception as e:
            logger.warning("Token accounting failed, forwarding response unchanged: %s", e)
            final = captured

        await flush_response(send, final)

    @staticmethod
    async def _read_body(receive: Receive, chunks: list[bytes]) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                raise _BodyReadError()
            if message["type"] != "http.request":
                continue
            chunk = message.get("body", b"")
            if chunk:
                chunks.append(chunk)
            if not message.get("more_body", False):
                return

    @staticmethod
    def _log_result(request: ChatRequest, result: AccountingResult) -> None:
        logger.info(
            "Token counter [%s] model=%s status=%d request=%s response=%s%s",
            result.outcome.value,
            request.model or "-",
            result.response.status,
            result.request_tokens if result.request_tokens is not None else "-",
            result.response_tokens if result.response_tokens is not None else "-",
            " (body rewritten)" if result.body_rewritten else "",
        )


def _replay(body: bytes, receive: Receive) -> Receive:
    """Build a ``receive`` that yields ``body`` once, then defers to ``receive``."""
    body_sent = False

    async def replay_receive() -> Message:
        nonlocal body_sent
        if not body_sent:
            body_sent = True
            message: dict[str, Any] = {"type": "http.request", "body": body, "more_body": False}
            return message
        return await receive()

    return replay_receive
