"""Configuration utilities for the dmanager CLI.

This module provides shared configuration functions used across CLI commands.
The session token lives in the OS keyring when one is usable, otherwise
in the config file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import keyring
from keyring.errors import KeyringError

from datamanager.client.keystore import Keystore
from datamanager.core.config import ServerConfig

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "DataManagerCLI"


class CLIConfigError(Exception):
    """Raised when the CLI configuration is incomplete."""


def get_config_dir() -> Path:
    """Get the configuration directory for dmanager.

    Returns:
        Path to ~/.dmanager or equivalent.
    """
    return Path.home() / ".dmanager"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_token(config: dict[str, Any]) -> str | None:
    """Get the session token, from the keyring first."""
    username = config.get("username", "")
    try:
        token = keyring.get_password(KEYRING_SERVICE, username)
    except KeyringError as e:
        logger.debug(f"Keyring unavailable: {e}")
        token = None
    return token or config.get("token")


def set_token(config: dict[str, Any], token: str) -> bool:
    """Store the session token and save the config.

    Returns:
        True if the token went to the keyring, False if it was written
        to the config file.
    """
    username = config.get("username", "")
    try:
        keyring.set_password(KEYRING_SERVICE, username, token)
    except KeyringError as e:
        logger.debug(f"Keyring unavailable, storing token in config: {e}")
        config["token"] = token
        save_config(config)
        return False
    config.pop("token", None)
    save_config(config)
    return True


def get_server_config(config: dict[str, Any]) -> ServerConfig:
    """Build the transport settings from the CLI config.

    Raises:
        CLIConfigError: If the server URL or the token is missing.
    """
    server_url = config.get("server_url")
    if not server_url:
        raise CLIConfigError("No server configured. Run 'dmanager config set server_url URL'.")
    token = get_token(config)
    if not token:
        raise CLIConfigError("Not logged in. Run 'dmanager login'.")
    return ServerConfig(
        server_url=server_url,
        token=token,
        verify_ssl=not config.get("ignore_cert", False),
    )


def get_keystore(config: dict[str, Any]) -> Keystore | None:
    """Return the configured keystore (not opened), or None."""
    keystore_dir = config.get("keystore_dir")
    if not keystore_dir:
        return None
    return Keystore(Path(keystore_dir).expanduser())


def get_namespace(config: dict[str, Any], namespace: str | None) -> str:
    """Resolve the namespace: explicit option, then config, then default."""
    return namespace or config.get("namespace") or "default"
