"""Session and settings commands for the dmanager CLI.

Commands:
- login: Store the session token
- config set: Change a setting
- config show: Show the settings
"""

from __future__ import annotations

import click

from datamanager.client.cli.config import (
    get_config_file,
    get_token,
    load_config,
    save_config,
    set_token,
)

SETTINGS = ("server_url", "username", "ignore_cert", "keystore_dir", "namespace")
BOOL_SETTINGS = ("ignore_cert",)


@click.command()
@click.option("--username", "-u", help="Account name.")
@click.option("--token", prompt=True, hide_input=True, help="Session token.")
def login(username: str | None, token: str) -> None:
    """Store the session token for the configured server."""
    config = load_config()
    if username:
        config["username"] = username
    if set_token(config, token):
        click.echo("Token stored in keyring")
    else:
        click.echo(f"No keyring available, token stored in {get_config_file()}")


@click.group("config")
def config_group() -> None:
    """Show or change settings."""


@config_group.command("set")
@click.argument("key", type=click.Choice(SETTINGS))
@click.argument("value")
def set_value(key: str, value: str) -> None:
    """Set KEY to VALUE."""
    config = load_config()
    if key in BOOL_SETTINGS:
        config[key] = value.lower() in ("1", "true", "yes", "on")
    elif key == "server_url":
        config[key] = value.rstrip("/")
    else:
        config[key] = value
    save_config(config)
    click.echo(f"{key} = {config[key]}")


@config_group.command("show")
def show() -> None:
    """Show the current settings."""
    config = load_config()
    click.echo(f"Config file: {get_config_file()}")
    for key in SETTINGS:
        click.echo(f"{key}: {config.get(key, '')}")
    click.echo(f"logged in: {'yes' if get_token(config) else 'no'}")
