"""CLI for the tether helper.

Usage:
    tether serve                              # Start the HTTP helper
    tether serve --port 9100 --fs-root ~/src  # Custom port and browsing root
    tether token                              # Print the pairing token
    tether vault set GITHUB_TOKEN             # Store a secret (prompted)
    tether vault delete GITHUB_TOKEN          # Remove a secret
    tether vault list                         # Stored secret names
    tether catalog                            # Known MCP server types
"""

from __future__ import annotations

import json as json_mod
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import click

from tether import __version__
from tether.cli_commands import vault as vault_commands
from tether.config import HelperConfig


@click.group()
@click.version_option(version=__version__, prog_name="tether")
def cli() -> None:
    """Tether: bridge a web app to local MCP servers."""


@cli.command()
@click.option("--port", default=None, type=click.IntRange(1, 65535), help="Port (default: TETHER_PORT or 9000)")
@click.option("--host", default=None, help="Bind address (default: TETHER_BIND or 127.0.0.1)")
@click.option(
    "--fs-root",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Root for read-only file browsing (default: TETHER_FS_ROOT or cwd)",
)
def serve(port: int | None, host: str | None, fs_root: Path | None) -> None:
    """Start the HTTP helper."""
    from tether.app import main as app_main

    try:
        config = HelperConfig.load()
    except OSError as e:
        click.echo(f"Could not initialize helper config: {e}", err=True)
        sys.exit(1)
    overrides: dict[str, Any] = {}
    if port is not None:
        overrides["port"] = port
    if host:
        overrides["host"] = host
    if fs_root is not None:
        overrides["fs_root"] = fs_root.resolve()
    app_main(replace(config, **overrides))


@cli.command()
@click.option("--show-path", is_flag=True, help="Also print where the token is stored")
def token(show_path: bool) -> None:
    """Print the helper's bearer token, creating it on first use."""
    try:
        config = HelperConfig.load()
    except OSError as e:
        click.echo(f"Could not initialize helper config: {e}", err=True)
        sys.exit(1)
    click.echo(config.token)
    if show_path:
        click.echo(f"Stored in: {config.config_path}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def catalog(as_json: bool) -> None:
    """List known MCP server types."""
    from tether.catalog import SERVERS, list_servers

    if as_json:
        click.echo(json_mod.dumps({"servers": list_servers()}, indent=2))
        return
    for server in SERVERS:
        click.echo(f"{server.id:<12} {server.name}")
        click.echo(f"  {server.example_path} {' '.join(server.example_args)}".rstrip())
        if server.required_secrets:
            click.echo(f"  secrets: {', '.join(server.required_secrets)}")


vault_commands.register(cli)


if __name__ == "__main__":
    cli()
