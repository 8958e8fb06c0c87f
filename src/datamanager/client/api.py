"""HTTP transport for the DataManager server.

This module provides:
- HTTPClient: authenticated httpx client
- send: request/response call with error mapping
- stream: streamed response for downloads
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from datamanager.core.config import ServerConfig
from datamanager.core.errors import (
    AuthenticationError,
    NotFoundError,
    TransportError,
)
from datamanager.core.protocol import (
    EP_PING,
    HEADER_STATUS,
    HEADER_STATUS_MESSAGE,
    RESPONSE_ERROR,
)

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    message = response.headers.get(HEADER_STATUS_MESSAGE, "")
    if message:
        return message
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase or "Unknown error"
    if isinstance(data, dict):
        return str(data.get("message") or data.get("detail") or "Unknown error")
    return "Unknown error"


class HTTPClient:
    """HTTP client for the DataManager server API."""

    def __init__(self, config: ServerConfig) -> None:
        """Initialize the client.

        Args:
            config: Server connection settings.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
        )

    @property
    def config(self) -> ServerConfig:
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the matching TransportError for failed responses."""
        failed = (
            response.status_code >= 400
            or response.headers.get(HEADER_STATUS) == RESPONSE_ERROR
        )
        if not failed:
            return response
        if not response.is_stream_consumed:
            response.read()
        message = _error_message(response)
        logger.debug(f"Request failed: {response.status_code} {message}")
        if response.status_code in (401, 403):
            raise AuthenticationError(message, response.status_code)
        if response.status_code == 404:
            raise NotFoundError(message, 404)
        raise TransportError(message, response.status_code)

    # === Health check ===

    def ping(self) -> bool:
        """Check if the server is reachable.

        Returns:
            True if server answered successfully.
        """
        try:
            response = self._client.get(EP_PING)
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Requests ===

    def send(
        self,
        endpoint: str,
        body: bytes | Iterable[bytes] | None = None,
        headers: dict[str, str] | None = None,
        method: str = "POST",
        json: Any = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Args:
            endpoint: Path relative to the server URL.
            body: Raw body, an iterator of chunks is streamed.
            headers: Extra request headers.
            method: HTTP method.
            json: JSON payload (instead of body).

        Raises:
            TransportError: On connection failure or non-success status.
        """
        try:
            response = self._client.request(
                method,
                endpoint,
                content=body,
                json=json,
                headers=headers,
            )
        except httpx.RequestError as e:
            raise TransportError(f"Request to {endpoint} failed: {e}") from e
        return self._handle_response(response)

    @contextmanager
    def stream(
        self,
        endpoint: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
        method: str = "POST",
    ) -> Iterator[httpx.Response]:
        """Send a request and yield the response without reading its body.

        Raises:
            TransportError: On connection failure or non-success status.
        """
        try:
            request = self._client.build_request(
                method, endpoint, json=json, headers=headers
            )
            response = self._client.send(request, stream=True)
        except httpx.RequestError as e:
            raise TransportError(f"Request to {endpoint} failed: {e}") from e
        try:
            yield self._handle_response(response)
        finally:
            response.close()


def iter_body(response: httpx.Response, chunk_size: int) -> Iterator[bytes]:
    """Iterate over a streamed response body.

    Raises:
        TransportError: If the connection fails mid-body.
    """
    try:
        yield from response.iter_bytes(chunk_size)
    except httpx.HTTPError as e:
        raise TransportError(f"Reading response body failed: {e}") from e
