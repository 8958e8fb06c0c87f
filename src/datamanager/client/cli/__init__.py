"""Command-line interface for dmanager.

This module provides the main CLI entry point and assembles all commands.

Commands:
- upload: Upload a file, folder or URL
- download: Download a file
- keys: Manage the local keystore
- config: Show or change settings
- login: Store the session token
"""

from __future__ import annotations

import logging
import sys

import click

from datamanager.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from datamanager.client.cli.keystore import keys
from datamanager.client.cli.session import config_group, login
from datamanager.client.cli.transfer import download, upload


def setup_logging(verbose: bool) -> None:
    """Send datamanager logs to stderr.

    Args:
        verbose: Log at DEBUG instead of WARNING.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    root_logger = logging.getLogger("datamanager")
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(handler)


@click.group()
@click.version_option(package_name="datamanager")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """dmanager - DataManager file transfer client."""
    setup_logging(verbose)


# Transfer commands
cli.add_command(upload)
cli.add_command(download)

# Keystore commands
cli.add_command(keys)

# Session commands
cli.add_command(login)
cli.add_command(config_group)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "setup_logging",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
