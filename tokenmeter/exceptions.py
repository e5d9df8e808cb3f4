"""Custom exceptions for tokenmeter.

All exceptions inherit from TokenmeterError, making it easy to catch
every tokenmeter-related error in one place.

Most of these never reach a client: the middleware catches parse errors
and degrades to bypass or local estimation instead of failing the request.

Example:
    from tokenmeter import ConfigurationError, TokenCounterConfig

    try:
        config = TokenCounterConfig(request_token_header="bad header")
    except ConfigurationError as e:
        print(f"Configuration problem: {e}")
"""

from __future__ import annotations

from typing import Any


class TokenmeterError(Exception):
    """Base exception for all tokenmeter errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(TokenmeterError):
    """Raised when tokenmeter is misconfigured.

    This includes:
    - Header names that are not valid HTTP field names
    - Negative fixed costs

    Example:
        ConfigurationError(
            "Invalid header name",
            details={"field": "request_token_header", "value": "X Bad"}
        )
    """

    pass


class RequestParseError(TokenmeterError):
    """Raised when a request body is not a chat-completion request.

    The middleware treats this as "out of scope" and forwards the
    request untouched.
    """

    pass


class ResponseParseError(TokenmeterError):
    """Raised when an upstream body does not look like a chat completion.

    The accounting engine falls back to local estimation when it sees this.
    """

    pass


class CaptureError(TokenmeterError):
    """Raised when a response capture is misused.

    This includes:
    - Writing to a capture that was already sealed
    - Sealing the same capture twice
    """

    pass
