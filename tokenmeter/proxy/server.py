"""tokenmeter forwarding proxy.

A thin reverse proxy in front of an OpenAI-compatible API. Every request
is forwarded unchanged; chat completions come back with token-count
headers added by TokenCountMiddleware.

Usage:
    tokenmeter proxy --upstream https://api.openai.com --port 8788

    # Point any OpenAI-compatible client at it:
    OPENAI_BASE_URL=http://localhost:8788/v1 your-app
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from tokenmeter import __version__
from tokenmeter.config import TokenCounterConfig, resolve_config
from tokenmeter.middleware import TokenCountMiddleware

logger = logging.getLogger("tokenmeter.proxy")

# Never forwarded in either direction
_HOP_BY_HOP = frozenset(
    {
        "host",
        "connection",
        "transfer-encoding",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "upgrade",
        "content-length",
    }
)

# httpx decodes the body, so the upstream's encoding headers no longer apply
_DECODED_BODY_HEADERS = frozenset({"content-encoding"})

_FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@dataclass
class ProxyConfig:
    """Proxy configuration."""

    # Upstream
    upstream_url: str = "https://api.openai.com"

    # Server
    host: str = "127.0.0.1"
    port: int = 8788

    # Timeouts
    connect_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 300.0

    # Token headers (empty/None means default)
    request_token_header: str | None = None
    response_token_header: str | None = None
    cache_status_header: str | None = None

    def token_config(self) -> TokenCounterConfig:
        return resolve_config(
            request_token_header=self.request_token_header,
            response_token_header=self.response_token_header,
            cache_status_header=self.cache_status_header,
        )


def _request_headers(request: Request) -> list[tuple[str, str]]:
    return [(k, v) for k, v in request.headers.items() if k.lower() not in _HOP_BY_HOP]


def _to_response(upstream: httpx.Response) -> Response:
    response = Response(content=upstream.content, status_code=upstream.status_code)
    for name, value in upstream.headers.multi_items():
        lowered = name.lower()
        if lowered in _HOP_BY_HOP or lowered in _DECODED_BODY_HEADERS:
            continue
        response.raw_headers.append((lowered.encode("latin-1"), value.encode("latin-1")))
    return response


def create_app(
    config: ProxyConfig | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create the FastAPI proxy application.

    Args:
        config: Proxy settings.
        http_client: Client used to reach the upstream. When omitted one is
            created here and closed on shutdown.
    """
    config = config or ProxyConfig()
    upstream_url = config.upstream_url.rstrip("/")
    token_config = config.token_config()

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=config.connect_timeout_seconds,
            read=config.request_timeout_seconds,
            write=config.request_timeout_seconds,
            pool=config.connect_timeout_seconds,
        )
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("tokenmeter proxy started, forwarding to %s", upstream_url)
        yield
        if owns_client:
            await client.aclose()
        logger.info("tokenmeter proxy stopped")

    app = FastAPI(
        title="tokenmeter proxy",
        description="Token-counting proxy for chat-completion APIs",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": __version__,
            "upstream": upstream_url,
            "config": {
                "request_token_header": token_config.request_token_header,
                "response_token_header": token_config.response_token_header,
                "cache_status_header": token_config.cache_status_header,
            },
        }

    @app.api_route("/{path:path}", methods=_FORWARDED_METHODS)
    async def forward(request: Request, path: str) -> Response:
        url = f"{upstream_url}/{path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"

        body = await request.body()
        try:
            upstream = await client.request(
                method=request.method,
                url=url,
                headers=_request_headers(request),
                content=body,
            )
        except httpx.HTTPError as e:
            logger.warning("Upstream request to %s failed: %s", url, e)
            return JSONResponse(
                status_code=502,
                content={"error": {"type": "upstream_error", "message": str(e)}},
            )

        return _to_response(upstream)

    app.add_middleware(TokenCountMiddleware, config=token_config)

    return app


def run_server(config: ProxyConfig | None = None) -> None:
    """Run the proxy server."""
    config = config or ProxyConfig()
    app = create_app(config)
    token_config = config.token_config()

    print(f"""
tokenmeter proxy {__version__}
  Listening:        http://{config.host}:{config.port}
  Upstream:         {config.upstream_url}
  Request tokens:   {token_config.request_token_header}
  Response tokens:  {token_config.response_token_header}
  Cache signal:     {token_config.cache_status_header}: {token_config.cache_hit_value}
""")

    uvicorn.run(app, host=config.host, port=config.port, log_level="warning")
