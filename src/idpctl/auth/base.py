"""Shared HTTP plumbing for the OAuth authenticators.

This module defines :class:`OAuthClient`, the base class of
:class:`~idpctl.auth.device_code.DeviceAuthenticator`,
:class:`~idpctl.auth.client_credentials.ClientCredentialsAuthenticator`, and
:class:`~idpctl.auth.token.TokenRetriever`. It owns the
:class:`httpx.AsyncClient` lifecycle and maps transport and decoding failures
onto the :class:`~idpctl.exceptions.AuthError` hierarchy.

Every request is awaited inside the caller's task, so cancelling that task
also cancels the in-flight request.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from idpctl.exceptions import DecodeError, TransportError

DEFAULT_TIMEOUT = 30.0
"""Per-request timeout in seconds for OAuth endpoints."""


class OAuthClient:
    """Base class for components that POST forms to OAuth endpoints.

    Args:
        http_client: An existing :class:`httpx.AsyncClient` to send requests
            through. When omitted, a short-lived client is opened for each
            operation. Tests inject a client built on
            :class:`httpx.MockTransport`.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
            yield client

    async def _post_form(
        self,
        client: httpx.AsyncClient,
        url: str,
        data: dict[str, str],
        action: str,
    ) -> httpx.Response:
        """POST *data* as a form and return the raw response.

        Raises:
            TransportError: If the request could not be sent or no response
                was received.
        """
        try:
            return await client.post(
                url, data=data, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{action} failed: {exc}") from exc

    @staticmethod
    def _decode_json(response: httpx.Response, action: str) -> dict[str, Any]:
        """Return the JSON object in *response*.

        Raises:
            DecodeError: If the body is not a JSON object.
        """
        try:
            body = response.json()
        except ValueError as exc:
            raise DecodeError(f"{action}: cannot decode response: {exc}") from exc
        if not isinstance(body, dict):
            raise DecodeError(f"{action}: expected a JSON object, got {type(body).__name__}")
        return body

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        """Raise a :class:`TransportError` carrying status and body for non-2xx responses."""
        if response.is_success:
            return
        raise TransportError(
            f"{action} failed with status {response.status_code}: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    async def _token_request(
        self, url: str, data: dict[str, str], action: str
    ) -> dict[str, Any]:
        """POST a token request and return the decoded success body.

        Raises:
            TransportError: On network failure or a non-2xx status.
            DecodeError: If the body is not JSON or lacks ``access_token``.
        """
        async with self._client() as client:
            response = await self._post_form(client, url, data, action)
        self._raise_for_status(response, action)
        body = self._decode_json(response, action)
        if not body.get("access_token"):
            raise DecodeError(f"{action}: response is missing 'access_token'")
        return body
