"""OAuth2 client credentials grant for machine logins.

Exchanges an application's client id and secret for a management API token
at the tenant's own token endpoint. No refresh token is issued, so renewals
repeat the same exchange with the client secret kept in the secret store.
"""

from __future__ import annotations

import logging

from idpctl.auth.base import OAuthClient
from idpctl.models import ClientCredentials, TokenResult

logger = logging.getLogger(__name__)


class ClientCredentialsAuthenticator(OAuthClient):
    """Authenticate a machine-to-machine application against one tenant."""

    async def authenticate(self, creds: ClientCredentials) -> TokenResult:
        """Run the client credentials exchange.

        Args:
            creds: The application's client id, secret, and tenant domain.

        Returns:
            The issued access token with ``expires_at`` computed at receipt
            time.

        Raises:
            TransportError: On network failure or a non-2xx status.
            DecodeError: If the response cannot be decoded.
        """
        data = {
            "grant_type": "client_credentials",
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "audience": f"https://{creds.domain}/api/v2/",
        }
        logger.debug("Requesting client credentials token for %s", creds.domain)
        body = await self._token_request(
            f"https://{creds.domain}/oauth/token",
            data,
            "client credentials exchange",
        )
        return TokenResult.from_response(body)
