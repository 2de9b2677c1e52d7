"""Refresh-token grant for tenants that logged in with the device flow."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from idpctl.auth.base import OAuthClient
from idpctl.models import DEFAULT_CREDENTIALS, Credentials, TokenResult

logger = logging.getLogger(__name__)


class TokenRetriever(OAuthClient):
    """Exchange a stored refresh token for a new access token.

    Args:
        credentials: Client id and token endpoint used for the exchange.
        http_client: Optional :class:`httpx.AsyncClient` to send requests
            through.
    """

    def __init__(
        self,
        credentials: Credentials = DEFAULT_CREDENTIALS,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(http_client)
        self.credentials = credentials

    async def refresh(self, domain: str, refresh_token: str) -> TokenResult:
        """Return a new access token for *domain*.

        Raises:
            TransportError: On network failure or a non-2xx status.
            DecodeError: If the response cannot be decoded.
        """
        logger.debug("Refreshing access token for %s", domain)
        data = {
            "grant_type": "refresh_token",
            "client_id": self.credentials.client_id,
            "refresh_token": refresh_token,
        }
        body = await self._token_request(
            self.credentials.oauth_token_endpoint,
            data,
            "cannot get a new access token from the refresh token",
        )
        result = TokenResult.from_response(body)
        return result.model_copy(update={"domain": domain})
