"""Main CLI entry point for tokenmeter."""

import logging

import click

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_version() -> str:
    """Get the current version."""
    try:
        from tokenmeter import __version__

        return __version__
    except ImportError:
        return "unknown"


@click.group()
@click.version_option(version=get_version(), prog_name="tokenmeter")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    help="Logging level (default: INFO)",
)
@click.pass_context
def main(ctx: click.Context, log_level: str) -> None:
    """tokenmeter - token-usage headers for chat-completion APIs.

    \b
    Examples:
        tokenmeter proxy                         Start the proxy
        tokenmeter --log-level DEBUG proxy       Log every accounting decision
    """
    ctx.ensure_object(dict)
    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)


# Import subcommands - these register themselves with the main group
def _register_commands() -> None:
    """Register all subcommands."""
    from . import proxy  # noqa: F401


_register_commands()

if __name__ == "__main__":
    main()
