"""CLI for the sfcontext MCP server.

Every option falls back to its environment variable, then to the built-in
default (see :mod:`sfcontext.config`).

Usage:
    sfcontext serve                              # stdio transport, workspace = cwd
    sfcontext serve --transport http --port 3000 # streamable HTTP on 127.0.0.1
    sfcontext serve --workspace /a,/b            # explicit workspace roots
    sfcontext config                             # show the effective configuration
    sfcontext-mcp                                # same as `sfcontext serve`
"""

from __future__ import annotations

import dataclasses
import json as json_mod
import sys
from typing import Any

import click

from sfcontext import __version__
from sfcontext.config import (
    ENV_BYPASS_HANDSHAKE,
    ENV_HTTP_PORT,
    ENV_LOG_LEVEL,
    ENV_LOGIN_URL,
    ENV_SECRET,
    ENV_STRICT_SSL,
    ENV_TRANSPORT,
    ENV_WORKSPACE,
    load_config,
)
from sfcontext.errors import SfContextError
from sfcontext.sanitize import sanitize_sensitive_data


def _server_options(func: Any) -> Any:
    options = [
        click.option("--transport", default=None, help=f"stdio or http [env: {ENV_TRANSPORT}; default: stdio]"),
        click.option("--log-level", default=None, help=f"MCP log level, e.g. debug, info [env: {ENV_LOG_LEVEL}]"),
        click.option(
            "--port", "http_port", default=None, type=int, help=f"HTTP port [env: {ENV_HTTP_PORT}; default: 3000]"
        ),
        click.option("--workspace", default=None, help=f"Comma-separated workspace roots [env: {ENV_WORKSPACE}]"),
        click.option("--password", "secret", default=None, help=f"Handshake secret [env: {ENV_SECRET}]"),
        click.option("--login-url", default=None, help=f"Handshake endpoint [env: {ENV_LOGIN_URL}]"),
        click.option(
            "--bypass-handshake",
            is_flag=True,
            default=False,
            help=f"Skip the access handshake [env: {ENV_BYPASS_HANDSHAKE}]",
        ),
        click.option(
            "--no-strict-ssl",
            is_flag=True,
            default=False,
            help=f"Do not verify TLS certificates of the handshake endpoint [env: {ENV_STRICT_SSL}]",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _cli_values(
    transport: str | None,
    log_level: str | None,
    http_port: int | None,
    workspace: str | None,
    secret: str | None,
    login_url: str | None,
    bypass_handshake: bool,
    no_strict_ssl: bool,
) -> dict[str, Any]:
    """Collect CLI values; ``None`` means "not given, use env or default"."""
    return {
        "transport": transport,
        "log_level": log_level,
        "http_port": http_port,
        "workspace": workspace,
        "secret": secret,
        "login_url": login_url,
        "bypass_handshake": True if bypass_handshake else None,
        "strict_ssl": False if no_strict_ssl else None,
    }


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="sfcontext")
def cli() -> None:
    """sfcontext: MCP tool-invocation server with phased startup."""


@cli.command()
@_server_options
def serve(**options: Any) -> None:
    """Run the MCP server until the client disconnects or a signal arrives."""
    from sfcontext.mcp_server import run_server

    try:
        run_server(_cli_values(**options))
    except (SfContextError, OSError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@cli.command("config")
@_server_options
def show_config(**options: Any) -> None:
    """Print the effective configuration as JSON (secret redacted)."""
    try:
        config = load_config(_cli_values(**options))
    except SfContextError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    data = sanitize_sensitive_data(dataclasses.asdict(config), {"secret"})
    click.echo(json_mod.dumps(data, indent=2))


def main() -> None:
    """Entry point for ``sfcontext-mcp``."""
    serve()
