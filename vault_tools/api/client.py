# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Vault HTTP API client.

A small client for the parts of the Vault HTTP API that tests need:
initialization status, token lookup and the generic secret paths.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

_LOG = logging.getLogger(__name__)

TOKEN_HEADER = "X-Vault-Token"


class VaultApiError(Exception):
    """Raised when a Vault API request fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        errors: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.errors = errors or []


@dataclass(frozen=True)
class VaultConfig:
    """Connection settings handed to code that talks to a Vault server."""

    enabled: bool
    token: str = field(repr=False)
    addr: str

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "token": self.token, "address": self.addr}


def _parse_errors(response: requests.Response) -> list[str]:
    """Extract Vault's {"errors": [...]} list from an error response."""
    try:
        body = response.json()
    except ValueError:
        return []
    if isinstance(body, dict):
        return [str(e) for e in body.get("errors") or []]
    return []


class VaultClient:
    """Client for the Vault HTTP API.

    Usage:
        client = VaultClient("http://127.0.0.1:8200", token="root")
        if client.init_status():
            client.write_secret("secret/foo", {"bar": "baz"})
            print(client.read_secret("secret/foo"))
    """

    def __init__(
        self,
        address: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
    ):
        """Initialize the Vault client.

        Args:
            address: Server address, e.g. "http://127.0.0.1:8200".
            token: Token sent with every request. Can be set later.
            timeout: Default request timeout in seconds.
            max_retries: Maximum retry attempts for failed requests. Use 0
                when the caller does its own polling.
        """
        self._address = address.rstrip("/")
        self._timeout = timeout
        self._token: Optional[str] = None

        self._session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PUT", "DELETE", "LIST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

        if token:
            self.set_token(token)

    @property
    def address(self) -> str:
        return self._address

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: str) -> None:
        """Authenticate all further requests with token."""
        self._token = token
        self._session.headers[TOKEN_HEADER] = token

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Optional[dict[str, Any]]:
        """Make an API request.

        Args:
            method: HTTP method.
            path: API path below /v1.
            json: JSON body data.
            timeout: Request timeout (uses default if None).

        Returns:
            Parsed JSON response, or None for empty (204) responses.

        Raises:
            VaultApiError: If the request fails.
        """
        url = f"{self._address}/v1/{path.lstrip('/')}"
        timeout = timeout or self._timeout

        try:
            response = self._session.request(method, url, json=json, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            response = e.response
            errors = _parse_errors(response) if response is not None else []
            raise VaultApiError(
                f"{method} {path} failed: {e}",
                status_code=response.status_code if response is not None else None,
                response_body=response.text if response is not None else None,
                errors=errors,
            ) from e
        except requests.exceptions.RequestException as e:
            raise VaultApiError(f"{method} {path} failed: {e}") from e

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise VaultApiError(
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
                response_body=response.text,
            ) from e

    # -- System --

    def init_status(self, timeout: Optional[float] = None) -> bool:
        """Check whether the server has been initialized.

        Args:
            timeout: Request timeout (uses default if None).

        Returns:
            The "initialized" flag reported by /v1/sys/init.
        """
        data = self._request("GET", "sys/init", timeout=timeout) or {}
        return bool(data.get("initialized", False))

    # -- Tokens --

    def lookup_self(self) -> dict[str, Any]:
        """Look up the token the client is authenticated with.

        Returns:
            The token's "data" block (id, policies, ttl, ...).
        """
        data = self._request("GET", "auth/token/lookup-self") or {}
        return data.get("data") or {}

    # -- Secrets --

    def read_secret(self, path: str) -> Optional[dict[str, Any]]:
        """Read a secret.

        Args:
            path: Secret path, e.g. "secret/foo".

        Returns:
            The secret's "data" block, or None if it does not exist.
        """
        try:
            data = self._request("GET", path)
        except VaultApiError as e:
            if e.status_code == 404:
                return None
            raise
        if data is None:
            return None
        return data.get("data")

    def write_secret(self, path: str, data: dict[str, Any]) -> None:
        """Write a secret."""
        self._request("PUT", path, json=data)

    def delete_secret(self, path: str) -> None:
        """Delete a secret."""
        self._request("DELETE", path)

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def __enter__(self) -> "VaultClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
