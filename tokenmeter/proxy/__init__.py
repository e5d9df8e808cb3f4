"""Standalone token-counting proxy."""

from .server import ProxyConfig, create_app, run_server

__all__ = ["ProxyConfig", "create_app", "run_server"]
