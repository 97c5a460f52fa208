"""CLI commands for the local secret store."""

from __future__ import annotations

import sys

import click

from tether.vault import SecretStore


def _store() -> SecretStore:
    from tether.config import VAULT_FILENAME, app_data_dir

    return SecretStore(app_data_dir() / VAULT_FILENAME)


@click.group()
def vault() -> None:
    """Manage secrets referenced as {{SECRET:NAME}} in server arguments."""


@vault.command("set")
@click.argument("name")
@click.option("--value", default=None, help="Secret value (prompted with hidden input when omitted)")
def vault_set(name: str, value: str | None) -> None:
    """Store or overwrite a secret."""
    name = name.strip()
    if not name:
        click.echo("Secret name must not be empty", err=True)
        sys.exit(1)
    if value is None:
        value = click.prompt(f"Value for {name}", hide_input=True)
    if not value:
        click.echo("Secret value must not be empty", err=True)
        sys.exit(1)
    try:
        _store().set(name, value)
    except OSError as e:
        click.echo(f"Failed to write vault: {e}", err=True)
        sys.exit(1)
    click.echo(f"Stored {name}")


@vault.command("delete")
@click.argument("name")
def vault_delete(name: str) -> None:
    """Remove a secret (no-op if it does not exist)."""
    try:
        removed = _store().delete(name.strip())
    except OSError as e:
        click.echo(f"Failed to write vault: {e}", err=True)
        sys.exit(1)
    click.echo(f"Deleted {name}" if removed else f"No secret named {name}")


@vault.command("list")
def vault_list() -> None:
    """List stored secret names (values are never shown)."""
    try:
        names = _store().names()
    except OSError as e:
        click.echo(f"Failed to read vault: {e}", err=True)
        sys.exit(1)
    if not names:
        click.echo("No secrets stored")
        return
    for name in names:
        click.echo(name)


def register(cli: click.Group) -> None:
    """Register vault group with the CLI."""
    cli.add_command(vault)
