"""Configuration models for tokenmeter."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace

from .exceptions import ConfigurationError

DEFAULT_REQUEST_TOKEN_HEADER = "X-Request-Token-Count"
DEFAULT_RESPONSE_TOKEN_HEADER = "X-Response-Token-Count"
DEFAULT_CACHE_STATUS_HEADER = "X-Cache-Status"
DEFAULT_CACHE_HIT_VALUE = "Hit"
DEFAULT_ROUTE_FRAGMENT = "/chat/completions"

# Flat cost charged for every image part, regardless of size or detail
DEFAULT_IMAGE_TOKEN_COST = 85

# RFC 7230 "token" characters
_HEADER_NAME_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

_ENV_PREFIX = "TOKENMETER_"


@dataclass(frozen=True)
class TokenCounterConfig:
    """Settings for the token-counting middleware.

    Build it through ``resolve_config`` (or ``from_env``) so empty header
    names fall back to their defaults. The resolved object is never
    mutated afterwards.

    Attributes:
        request_token_header: Response header carrying prompt-side tokens.
        response_token_header: Response header carrying completion tokens.
        cache_status_header: Upstream header signalling a cache hit.
        cache_hit_value: Exact (case-sensitive) value meaning "hit".
        route_fragment: Only POST paths containing this are accounted.
        image_token_cost: Fixed token cost of an image content part.
    """

    request_token_header: str = DEFAULT_REQUEST_TOKEN_HEADER
    response_token_header: str = DEFAULT_RESPONSE_TOKEN_HEADER
    cache_status_header: str = DEFAULT_CACHE_STATUS_HEADER
    cache_hit_value: str = DEFAULT_CACHE_HIT_VALUE
    route_fragment: str = DEFAULT_ROUTE_FRAGMENT
    image_token_cost: int = DEFAULT_IMAGE_TOKEN_COST

    def __post_init__(self) -> None:
        for field_name in ("request_token_header", "response_token_header", "cache_status_header"):
            value = getattr(self, field_name)
            if not _HEADER_NAME_PATTERN.match(value):
                raise ConfigurationError(
                    "Invalid header name",
                    details={"field": field_name, "value": value},
                )
        if self.request_token_header.lower() == self.response_token_header.lower():
            raise ConfigurationError(
                "Request and response token headers must differ",
                details={"header": self.request_token_header},
            )
        if self.image_token_cost < 0:
            raise ConfigurationError(
                "image_token_cost must be non-negative",
                details={"image_token_cost": self.image_token_cost},
            )

    @classmethod
    def from_env(cls, **overrides: str | int | None) -> TokenCounterConfig:
        """Resolve a config from TOKENMETER_* environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: dict[str, str | int | None] = {
            "request_token_header": os.environ.get(f"{_ENV_PREFIX}REQUEST_TOKEN_HEADER"),
            "response_token_header": os.environ.get(f"{_ENV_PREFIX}RESPONSE_TOKEN_HEADER"),
            "cache_status_header": os.environ.get(f"{_ENV_PREFIX}CACHE_STATUS_HEADER"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return resolve_config(**values)  # type: ignore[arg-type]


def resolve_config(
    request_token_header: str | None = None,
    response_token_header: str | None = None,
    cache_status_header: str | None = None,
    cache_hit_value: str | None = None,
    route_fragment: str | None = None,
    image_token_cost: int | None = None,
) -> TokenCounterConfig:
    """Apply defaults to possibly-empty settings.

    Empty strings and None both mean "use the default", matching how the
    header names are usually fed in from CLI flags or environment variables.
    """
    config = TokenCounterConfig()
    overrides = {
        "request_token_header": (request_token_header or "").strip(),
        "response_token_header": (response_token_header or "").strip(),
        "cache_status_header": (cache_status_header or "").strip(),
        "cache_hit_value": cache_hit_value or "",
        "route_fragment": route_fragment or "",
    }
    changes: dict[str, str | int] = {k: v for k, v in overrides.items() if v}
    if image_token_cost is not None:
        changes["image_token_cost"] = image_token_cost
    return replace(config, **changes) if changes else config
