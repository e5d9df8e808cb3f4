"""
tokenmeter - token-usage headers for chat-completion APIs.

tokenmeter sits between a client and an OpenAI-compatible chat-completion
endpoint and reports how many tokens each exchange used:

- X-Request-Token-Count: prompt-side tokens
- X-Response-Token-Count: completion-side tokens

When the upstream reports usage the numbers are passed through. When it
does not (unparseable bodies, errors, cache hits reporting 0) they are
estimated locally, and on cache hits the ``usage`` object in the body is
patched to match.

Quick Start:

    from fastapi import FastAPI
    from tokenmeter import TokenCountMiddleware

    app = FastAPI()
    app.add_middleware(TokenCountMiddleware)

Standalone proxy:

    tokenmeter proxy --upstream https://api.openai.com

Estimating by hand:

    from tokenmeter import estimate_tokens
    estimate_tokens("How many tokens is this?")  # -> 6
"""

from .accounting import AccountingOutcome, AccountingResult, TokenAccountant, rewrite_usage
from .capture import CapturedResponse, ResponseCapture, flush_response
from .config import TokenCounterConfig, resolve_config
from .exceptions import (
    CaptureError,
    ConfigurationError,
    RequestParseError,
    ResponseParseError,
    TokenmeterError,
)
from .middleware import TokenCountMiddleware
from .parser import (
    ChatCompletion,
    ChatMessage,
    ChatRequest,
    ImagePart,
    PartList,
    PlainText,
    TextPart,
    UnknownPart,
    Usage,
    parse_completion,
    parse_content,
    parse_request,
)
from .tokenizers import (
    BaseTokenizer,
    TokenCounter,
    WordRunEstimator,
    count_content_tokens,
    estimate_tokens,
)

__version__ = "0.1.0"

__all__ = [
    # Middleware
    "TokenCountMiddleware",
    # Config
    "TokenCounterConfig",
    "resolve_config",
    # Accounting
    "TokenAccountant",
    "AccountingResult",
    "AccountingOutcome",
    "rewrite_usage",
    # Capture
    "ResponseCapture",
    "CapturedResponse",
    "flush_response",
    # Parsing
    "ChatRequest",
    "ChatMessage",
    "ChatCompletion",
    "Usage",
    "PlainText",
    "PartList",
    "TextPart",
    "ImagePart",
    "UnknownPart",
    "parse_request",
    "parse_completion",
    "parse_content",
    # Token counting
    "TokenCounter",
    "BaseTokenizer",
    "WordRunEstimator",
    "estimate_tokens",
    "count_content_tokens",
    # Exceptions
    "TokenmeterError",
    "ConfigurationError",
    "RequestParseError",
    "ResponseParseError",
    "CaptureError",
]
