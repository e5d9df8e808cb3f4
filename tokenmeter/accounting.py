"""Token accounting for captured chat-completion responses.

Given the parsed request and the buffered upstream response, decide which
token counts to report and whether the body needs patching:

- Upstream error (status != 200): pass through, report the estimated
  request tokens only.
- Unparseable body: estimate both sides locally.
- Cache hit: the upstream's usage is not trustworthy (cached responses
  often report 0), so estimate both sides and patch ``usage`` in the body.
- Otherwise: report what the upstream says, skipping zero counts.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .capture import CapturedResponse
from .config import TokenCounterConfig
from .exceptions import ResponseParseError
from .parser import (
    DECODE_ERRORS,
    ChatCompletion,
    ChatRequest,
    parse_completion,
    parse_stream_chunks,
    salvage_completion,
)
from .tokenizers import TokenCounter, WordRunEstimator

logger = logging.getLogger(__name__)

HTTP_OK = 200


class AccountingOutcome(str, Enum):
    """Which path produced the reported counts."""

    UPSTREAM_ERROR = "upstream_error"
    ESTIMATED = "estimated"
    CACHE_HIT = "cache_hit"
    REPORTED = "reported"


@dataclass(frozen=True)
class AccountingResult:
    """Final response plus the counts that went into its headers.

    A count of None means the corresponding header was left unset.
    """

    response: CapturedResponse
    outcome: AccountingOutcome
    request_tokens: int | None = None
    response_tokens: int | None = None
    body_rewritten: bool = False


def rewrite_usage(body: bytes, prompt_tokens: int, completion_tokens: int) -> bytes:
    """Overwrite the ``usage`` counts inside a JSON response body.

    Only the three count fields of a top-level ``usage`` object are
    touched; everything else survives the decode/encode round trip
    (key order is kept, whitespace is not). Bodies without a usage object,
    or that cannot be decoded or re-encoded, are returned unchanged.
    """
    try:
        data: Any = json.loads(body)
    except DECODE_ERRORS as e:
        logger.debug("Usage rewrite skipped, body is not JSON: %s", e)
        return body

    if not isinstance(data, dict) or not isinstance(data.get("usage"), dict):
        return body

    usage = data["usage"]
    usage["prompt_tokens"] = prompt_tokens
    usage["completion_tokens"] = completion_tokens
    usage["total_tokens"] = prompt_tokens + completion_tokens

    try:
        # allow_nan=False: numbers that overflowed to inf must not come back as Infinity
        return json.dumps(
            data, ensure_ascii=False, allow_nan=False, separators=(",", ":")
        ).encode("utf-8")
    except (TypeError, ValueError, RecursionError) as e:
        logger.warning("Usage rewrite failed, forwarding original body: %s", e)
        return body


class TokenAccountant:
    """Decides the token headers (and body patch) for one response.

    Holds only immutable settings, so one instance can serve concurrent
    requests.

    Args:
        config: Resolved middleware configuration.
        counter: Token counter used on the estimation paths. Defaults to a
            WordRunEstimator using the configured image cost.
    """

    def __init__(
        self,
        config: TokenCounterConfig | None = None,
        counter: TokenCounter | None = None,
    ) -> None:
        self.config = config or TokenCounterConfig()
        self.counter = counter or WordRunEstimator(image_token_cost=self.config.image_token_cost)

    def is_cache_hit(self, response: CapturedResponse) -> bool:
        value = response.headers.get(self.config.cache_status_header)
        return value == self.config.cache_hit_value

    def account(self, request: ChatRequest, response: CapturedResponse) -> AccountingResult:
        """Run the decision for one captured response."""
        if response.status != HTTP_OK:
            return self._upstream_error(request, response)

        try:
            completion = parse_completion(response.body)
        except ResponseParseError as e:
            logger.debug("Upstream body is not a chat completion: %s", e)
            return self._estimate(request, response)

        if self.is_cache_hit(response):
            return self._cache_hit(request, response, completion)
        return self._reported(response, completion)

    def _headers(self, request_tokens: int | None, response_tokens: int | None) -> dict[str, str]:
        headers = {}
        if request_tokens is not None:
            headers[self.config.request_token_header] = str(request_tokens)
        if response_tokens is not None:
            headers[self.config.response_token_header] = str(response_tokens)
        return headers

    def _upstream_error(self, request: ChatRequest, response: CapturedResponse) -> AccountingResult:
        request_tokens = self.counter.count_request(request)
        logger.debug(
            "Upstream returned %d, reporting estimated request tokens %d",
            response.status,
            request_tokens,
        )
        return AccountingResult(
            response=response.with_headers(self._headers(request_tokens, None)),
            outcome=AccountingOutcome.UPSTREAM_ERROR,
            request_tokens=request_tokens,
        )

    def _estimate(self, request: ChatRequest, response: CapturedResponse) -> AccountingResult:
        request_tokens = self.counter.count_request(request)

        # A JSON object with readable choices is counted even if usage is broken
        response_tokens = 0
        salvaged = salvage_completion(response.body)
        if salvaged is not None:
            response_tokens = self.counter.count_completion(salvaged)
        if response_tokens == 0:
            response_tokens = self.counter.count_stream(parse_stream_chunks(response.body))

        return AccountingResult(
            response=response.with_headers(self._headers(request_tokens, response_tokens)),
            outcome=AccountingOutcome.ESTIMATED,
            request_tokens=request_tokens,
            response_tokens=response_tokens,
        )

    def _cache_hit(
        self,
        request: ChatRequest,
        response: CapturedResponse,
        completion: ChatCompletion,
    ) -> AccountingResult:
        request_tokens = self.counter.count_request(request)
        response_tokens = self.counter.count_completion(completion)

        body = rewrite_usage(response.body, request_tokens, response_tokens)
        logger.debug(
            "Cache hit, estimated %d request / %d response tokens",
            request_tokens,
            response_tokens,
        )
        return AccountingResult(
            response=response.with_body(body).with_headers(
                self._headers(request_tokens, response_tokens)
            ),
            outcome=AccountingOutcome.CACHE_HIT,
            request_tokens=request_tokens,
            response_tokens=response_tokens,
            body_rewritten=body != response.body,
        )

    def _reported(self, response: CapturedResponse, completion: ChatCompletion) -> AccountingResult:
        usage = completion.usage
        # A zero count means "not reported", not "free"
        request_tokens = usage.prompt_tokens if usage.prompt_tokens > 0 else None
        response_tokens = usage.completion_tokens if usage.completion_tokens > 0 else None
        return AccountingResult(
            response=response.with_headers(self._headers(request_tokens, response_tokens)),
            outcome=AccountingOutcome.REPORTED,
            request_tokens=request_tokens,
            response_tokens=response_tokens,
        )
