"""Proxy server CLI commands."""

import click

from .main import main


@main.command()
@click.option(
    "--upstream",
    default="https://api.openai.com",
    envvar="TOKENMETER_UPSTREAM_URL",
    help="Upstream API base URL (default: https://api.openai.com)",
)
@click.option("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
@click.option("--port", "-p", default=8788, type=int, help="Port to bind to (default: 8788)")
@click.option(
    "--request-token-header",
    default="",
    envvar="TOKENMETER_REQUEST_TOKEN_HEADER",
    help="Header for prompt-side tokens (default: X-Request-Token-Count)",
)
@click.option(
    "--response-token-header",
    default="",
    envvar="TOKENMETER_RESPONSE_TOKEN_HEADER",
    help="Header for completion-side tokens (default: X-Response-Token-Count)",
)
@click.option(
    "--cache-status-header",
    default="",
    envvar="TOKENMETER_CACHE_STATUS_HEADER",
    help="Upstream header signalling cache hits (default: X-Cache-Status)",
)
@click.option(
    "--timeout",
    default=300.0,
    type=float,
    help="Upstream read timeout in seconds (default: 300)",
)
def proxy(
    upstream: str,
    host: str,
    port: int,
    request_token_header: str,
    response_token_header: str,
    cache_status_header: str,
    timeout: float,
) -> None:
    """Start the token-counting proxy.

    \b
    Examples:
        tokenmeter proxy                                 Forward to OpenAI on port 8788
        tokenmeter proxy --upstream http://localhost:4000
        tokenmeter proxy --request-token-header X-Prompt-Tokens

    \b
    Usage with OpenAI-compatible clients:
        OPENAI_BASE_URL=http://localhost:8788/v1 your-app
    """
    from tokenmeter.exceptions import ConfigurationError
    from tokenmeter.proxy.server import ProxyConfig, run_server

    config = ProxyConfig(
        upstream_url=upstream,
        host=host,
        port=port,
        request_timeout_seconds=timeout,
        request_token_header=request_token_header,
        response_token_header=response_token_header,
        cache_status_header=cache_status_header,
    )

    try:
        config.token_config()
    except ConfigurationError as e:
        raise click.BadParameter(str(e)) from e

    run_server(config)
