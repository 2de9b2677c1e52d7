"""OAuth2 Device Authorization Grant (:rfc:`8628`) for interactive logins.

Flow:
    1. :meth:`DeviceAuthenticator.request_device_code` obtains a
       ``device_code`` and a ``user_code``.
    2. The CLI shows the user code and opens the verification URI.
    3. :meth:`DeviceAuthenticator.poll_for_token` polls the token endpoint
       until the user approves, the server returns a terminal error, or the
       device code expires.
    4. The tenant and its domain are derived from the access token's audience
       with :func:`parse_tenant`.

The resulting :class:`~idpctl.models.TokenResult` is handed to
:meth:`~idpctl.auth.lifecycle.TokenLifecycleManager.complete_device_login`.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

import httpx

from idpctl.auth.base import OAuthClient
from idpctl.exceptions import (
    AudienceNotFoundError,
    DecodeError,
    DeviceCodeExpiredError,
    ProtocolError,
    TransportError,
)
from idpctl.models import DEFAULT_CREDENTIALS, Credentials, DeviceCodeState, TokenResult
from idpctl.scopes import merge_scopes

logger = logging.getLogger(__name__)

WAIT_THRESHOLD = 3.0
"""Seconds added to the server's polling interval between token polls."""

SLOW_DOWN_FACTOR = 1.5

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

MANAGEMENT_API_PATH = "/api/v2/"


class DeviceAuthenticator(OAuthClient):
    """Run the device authorization flow against the configured endpoints.

    Args:
        credentials: Client id, audience and endpoints. Defaults to
            :data:`~idpctl.models.DEFAULT_CREDENTIALS`.
        http_client: Optional :class:`httpx.AsyncClient` to send requests
            through.
        sleep: Awaitable used to wait between polls. Tests pass a fake that
            records the requested delays instead of sleeping.
    """

    def __init__(
        self,
        credentials: Credentials = DEFAULT_CREDENTIALS,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(http_client)
        self.credentials = credentials
        self._sleep = sleep

    async def request_device_code(
        self,
        scopes: Optional[list[str]] = None,
        audience: Optional[str] = None,
    ) -> DeviceCodeState:
        """Start a login by requesting a device code.

        Args:
            scopes: Scopes requested on top of the required baseline.
            audience: API audience; defaults to the credentials' audience.

        Returns:
            The device code state to display and poll with.

        Raises:
            TransportError: On network failure or a non-2xx status. The
                message includes the status code and raw body.
            DecodeError: If the response is not a valid device code object.
        """
        data = {
            "client_id": self.credentials.client_id,
            "scope": " ".join(merge_scopes(scopes)),
            "audience": audience or self.credentials.audience,
        }
        action = "device code request"
        async with self._client() as client:
            response = await self._post_form(
                client, self.credentials.device_code_endpoint, data, action
            )
        self._raise_for_status(response, action)
        body = self._decode_json(response, action)
        try:
            return DeviceCodeState.model_validate(body)
        except ValueError as exc:
            raise DecodeError(f"{action}: unexpected response: {exc}") from exc

    async def poll_for_token(self, state: DeviceCodeState) -> TokenResult:
        """Poll until the user authorizes the device code.

        Waits ``interval + 3`` seconds before every poll. ``authorization_pending``
        keeps polling; ``slow_down`` multiplies the interval by 1.5 first.

        Args:
            state: The state returned by :meth:`request_device_code`.

        Returns:
            The issued tokens, with ``tenant`` and ``domain`` derived from the
            access token.

        Raises:
            ProtocolError: If the server returns any other OAuth error. The
                message is the server's ``error_description`` verbatim.
            DeviceCodeExpiredError: If ``expires_in`` elapses first.
            TransportError: On network failure or a non-JSON error response.
            DecodeError: If a success body cannot be decoded or its access
                token has no management API audience.
        """
        data = {
            "grant_type": DEVICE_CODE_GRANT,
            "client_id": self.credentials.client_id,
            "device_code": state.device_code,
        }
        action = "device token poll"
        interval = float(state.interval)
        waited = 0.0

        async with self._client() as client:
            while True:
                delay = interval + WAIT_THRESHOLD
                if waited + delay > state.expires_in:
                    raise DeviceCodeExpiredError(
                        "the device code expired before authorization completed, "
                        "please log in again"
                    )
                await self._sleep(delay)
                waited += delay

                response = await self._post_form(
                    client, self.credentials.oauth_token_endpoint, data, action
                )
                try:
                    body = response.json()
                except ValueError as exc:
                    if not response.is_success:
                        raise TransportError(
                            f"{action} failed with status {response.status_code}: "
                            f"{response.text}",
                            status_code=response.status_code,
                            body=response.text,
                        ) from exc
                    raise DecodeError(f"{action}: cannot decode response: {exc}") from exc
                if not isinstance(body, dict):
                    raise DecodeError(f"{action}: expected a JSON object")

                error = body.get("error")
                if error == "authorization_pending":
                    logger.debug("Authorization pending, next poll in %.1fs", delay)
                    continue
                if error == "slow_down":
                    interval *= SLOW_DOWN_FACTOR
                    logger.debug("Server asked to slow down, interval now %.1fs", interval)
                    continue
                if error:
                    raise ProtocolError(error, body.get("error_description") or "")

                self._raise_for_status(response, action)
                if not body.get("access_token"):
                    raise DecodeError(f"{action}: response is missing 'access_token'")
                break

        result = TokenResult.from_response(body)
        tenant, domain = parse_tenant(result.access_token)
        logger.debug("Device login completed for tenant %s (%s)", tenant, domain)
        return result.model_copy(update={"tenant": tenant, "domain": domain})


def _decode_segment(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def decode_jwt_claims(token: str) -> dict[str, Any]:
    """Return the claims of a JWT without verifying its signature.

    Only used to read display and routing information (tenant, audience).

    Raises:
        DecodeError: If the token is not three dot-separated segments or the
            payload is not a JSON object.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise DecodeError("access token is not a JWT: expected three segments")
    try:
        claims = json.loads(_decode_segment(parts[1]))
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecodeError(f"cannot decode access token payload: {exc}") from exc
    if not isinstance(claims, dict):
        raise DecodeError("access token payload is not a JSON object")
    return claims


def parse_tenant(access_token: str) -> tuple[str, str]:
    """Derive ``(tenant, domain)`` from the management API audience of a token.

    The ``aud`` claim may be a string or a list. The first entry whose path is
    ``/api/v2/`` wins; its host is the domain and the first DNS label of the
    host is the tenant name.

    Raises:
        AudienceNotFoundError: If no audience points at the management API.
        DecodeError: If the token cannot be decoded.
    """
    claims = decode_jwt_claims(access_token)
    audiences = claims.get("aud", [])
    if isinstance(audiences, str):
        audiences = [audiences]

    for aud in audiences:
        if not isinstance(aud, str):
            continue
        parsed = urlparse(aud)
        if parsed.path == MANAGEMENT_API_PATH and parsed.netloc:
            domain = parsed.netloc
            return domain.split(".")[0], domain

    raise AudienceNotFoundError(f"audience not found for {MANAGEMENT_API_PATH}")


def ensure_audience_url(domain: str) -> str:
    """Turn a user-supplied tenant domain into a management API audience URL.

    An empty domain yields the default wildcard audience. A scheme prefix and
    trailing slashes are tolerated::

        >>> ensure_audience_url("https://acme.us.example.com/")
        'https://acme.us.example.com/api/v2/'
    """
    if not domain:
        return DEFAULT_CREDENTIALS.audience
    domain = domain.strip()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    domain = domain.rstrip("/")
    return f"https://{domain}{MANAGEMENT_API_PATH}"
