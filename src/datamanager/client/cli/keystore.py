"""Keystore commands for the dmanager CLI.

Commands:
- keys add: Register a key file for a remote file
- keys rm: Remove the key of a remote file
- keys ls: List stored keys
"""

from __future__ import annotations

import shutil
import sys
from datetime import datetime
from pathlib import Path

import click

from datamanager.client.cli.config import get_keystore, load_config
from datamanager.client.keystore import KeyAlreadyExistsError, Keystore, KeyStoreError


def _open_keystore() -> Keystore:
    keystore = get_keystore(load_config())
    if keystore is None:
        click.echo("Error: No keystore configured.", err=True)
        click.echo("Set one with: dmanager config set keystore_dir PATH", err=True)
        sys.exit(1)
    try:
        keystore.open()
    except KeyStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    return keystore


@click.group()
def keys() -> None:
    """Manage the local keystore."""


@keys.command("add")
@click.argument("file_id", type=int)
@click.argument("key_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def add_key(file_id: int, key_file: Path) -> None:
    """Store KEY_FILE as the key of FILE_ID.

    The key file is copied into the keystore directory.
    """
    keystore = _open_keystore()
    try:
        if keystore.has_key(file_id):
            raise KeyAlreadyExistsError(file_id)
        target = keystore.key_path(key_file.name)
        if target.resolve() != key_file.resolve():
            if target.exists():
                target = keystore.key_path(f"{file_id}-{key_file.name}")
            shutil.copyfile(key_file, target)
            target.chmod(0o600)
        keystore.add_key(file_id, target)
    except KeyStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        keystore.close()
    click.echo(f"Added key for file {file_id}")


@keys.command("rm")
@click.argument("file_id", type=int)
@click.option("--keep-file", is_flag=True, help="Keep the key file on disk.")
def remove_key(file_id: int, keep_file: bool) -> None:
    """Remove the key of FILE_ID."""
    keystore = _open_keystore()
    try:
        keystore.delete_key(file_id, remove_file=not keep_file)
    except KeyStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        keystore.close()
    click.echo(f"Removed key for file {file_id}")


@keys.command("ls")
def list_keys() -> None:
    """List stored keys."""
    keystore = _open_keystore()
    try:
        entries = keystore.list_keys()
        valid = keystore.key_count(valid_only=True)
        if not entries:
            click.echo("Keystore is empty")
            return
        for entry in entries:
            missing = "" if keystore.key_path(entry.key_file).is_file() else " (missing)"
            added = datetime.fromtimestamp(entry.created_at).strftime("%Y-%m-%d %H:%M")
            click.echo(f"{entry.file_id}\t{entry.key_file}\t{added}{missing}")
        click.echo(f"{len(entries)} keys, {valid} valid")
    finally:
        keystore.close()
