"""Canonical Pydantic models shared across all idpctl modules.

This is the single source of truth for data shapes in the project. The models
fall into two groups:

**Persisted models** -- serialised as JSON in the user's config directory:
    :class:`AuthMethod`, :class:`Tenant`, and :class:`Config`.

**Flow models** -- short-lived values exchanged between the authenticators and
the token lifecycle manager:
    :class:`Credentials`, :class:`ClientCredentials`,
    :class:`DeviceCodeState`, and :class:`TokenResult`.

All models use Pydantic v2. Persisted models drop empty optional fields on
output so that the config file stays small and diff-friendly.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_serializer,
    model_validator,
)

from idpctl.scopes import REQUIRED_SCOPES

ACCESS_TOKEN_EXPIRY_THRESHOLD = timedelta(minutes=5)
"""Tokens this close to expiry are renewed proactively."""

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Persisted models ---


class AuthMethod(str, enum.Enum):
    """How a tenant was authenticated, and therefore how it is refreshed."""

    DEVICE_CODE = "device_code"
    CLIENT_CREDENTIALS = "client_credentials"


class Tenant(BaseModel):
    """A tenant the CLI is authenticated against.

    The domain is the unique key. The access token's authoritative copy lives
    in the secret store; :attr:`access_token` is only populated when the
    secret store could not hold it.

    Older config files carry no ``auth_method``; it is inferred from
    ``client_id`` on load (non-empty means client credentials).

    Example::

        Tenant(
            name="acme",
            domain="acme.us.example.com",
            expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
    """

    name: str = ""
    domain: str
    access_token: str = ""
    scopes: list[str] = Field(default_factory=list)
    expires_at: datetime = _EPOCH
    default_app_id: str = ""
    client_id: str = ""
    auth_method: AuthMethod = AuthMethod.DEVICE_CODE

    @model_validator(mode="before")
    @classmethod
    def _infer_auth_method(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("auth_method"):
            data = dict(data)
            data["auth_method"] = (
                AuthMethod.CLIENT_CREDENTIALS
                if data.get("client_id")
                else AuthMethod.DEVICE_CODE
            )
        return data

    @field_validator("expires_at")
    @classmethod
    def _normalise_expiry(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_serializer(mode="wrap")
    def _omit_empty(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        for key in ("access_token", "scopes", "default_app_id"):
            if not data.get(key):
                data.pop(key, None)
        return data

    # -- scopes --

    def get_missing_required_scopes(self) -> list[str]:
        """Return the required scopes absent from this tenant's granted scopes."""
        granted = set(self.scopes)
        return [s for s in REQUIRED_SCOPES if s not in granted]

    def has_all_required_scopes(self) -> bool:
        """Return ``True`` if the granted scopes are a superset of the required ones."""
        return not self.get_missing_required_scopes()

    def get_extra_requested_scopes(self) -> list[str]:
        """Return the scopes granted beyond the required baseline."""
        required = set(REQUIRED_SCOPES)
        return [s for s in self.scopes if s not in required]

    # -- authentication mode --

    def is_authenticated_with_client_credentials(self) -> bool:
        return self.auth_method is AuthMethod.CLIENT_CREDENTIALS

    def is_authenticated_with_device_code_flow(self) -> bool:
        return self.auth_method is AuthMethod.DEVICE_CODE

    # -- expiry --

    def has_expired_token(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` if the access token expires within the renewal window.

        A token is considered expired when ``now + 5 minutes`` is past
        :attr:`expires_at`, so that it is renewed before a request can fail.

        Args:
            now: Reference time; defaults to the current UTC time.
        """
        now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        return now + ACCESS_TOKEN_EXPIRY_THRESHOLD > self.expires_at


class Config(BaseModel):
    """Root of the config file: installation identity plus the tenant registry.

    ``tenants`` is keyed by tenant domain. When it is non-empty,
    ``default_tenant`` must name one of its keys;
    :meth:`~idpctl.config.ConfigStore.validate` repairs the file otherwise.
    """

    install_id: str = ""
    default_tenant: str = ""
    tenants: dict[str, Tenant] = Field(default_factory=dict)

    @field_validator("tenants", mode="before")
    @classmethod
    def _null_tenants(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_serializer(mode="wrap")
    def _stable_output(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        if not data.get("install_id"):
            data.pop("install_id", None)
        data["tenants"] = dict(sorted(data.get("tenants", {}).items()))
        return data


# --- Flow models ---


class Credentials(BaseModel):
    """Endpoints and client identity used by the interactive login.

    Passed explicitly to each authenticator so tests can point the flow at a
    local server without touching module state.
    """

    model_config = ConfigDict(frozen=True)

    audience: str
    client_id: str
    device_code_endpoint: str
    oauth_token_endpoint: str


DEFAULT_AUTH_DOMAIN = "auth.idpctl.dev"

DEFAULT_CREDENTIALS = Credentials(
    audience="https://*.idpctl.dev/api/v2/",
    client_id="idpctl-cli-public",
    device_code_endpoint=f"https://{DEFAULT_AUTH_DOMAIN}/oauth/device/code",
    oauth_token_endpoint=f"https://{DEFAULT_AUTH_DOMAIN}/oauth/token",
)


class ClientCredentials(BaseModel):
    """Input to the machine login: an application's client id and secret."""

    client_id: str
    client_secret: str = Field(repr=False)
    domain: str


class DeviceCodeState(BaseModel):
    """Response of the device authorization endpoint for one login attempt.

    Attributes:
        device_code: Code used to poll for tokens (never shown to the user).
        user_code: Code the user confirms in the browser.
        verification_uri: URL the user opens, with the user code embedded.
        expires_in: Seconds until the device code expires.
        interval: Minimum polling cadence in seconds.
    """

    model_config = ConfigDict(populate_by_name=True)

    device_code: str
    user_code: str
    verification_uri: str = Field(alias="verification_uri_complete")
    expires_in: int = 900
    interval: int = 5

    @model_validator(mode="before")
    @classmethod
    def _fallback_verification_uri(cls, data: Any) -> Any:
        if (
            isinstance(data, dict)
            and "verification_uri_complete" not in data
            and "verification_uri" in data
        ):
            data = dict(data)
            data["verification_uri_complete"] = data.pop("verification_uri")
        return data


class TokenResult(BaseModel):
    """Tokens produced by an authenticator, consumed immediately by the lifecycle manager.

    ``tenant`` and ``domain`` are only set by the device flow, which derives
    them from the access token's audience.
    """

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    id_token: Optional[str] = Field(default=None, repr=False)
    token_type: str = "Bearer"
    expires_in: int = 0
    expires_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    tenant: Optional[str] = None
    domain: Optional[str] = None

    @classmethod
    def from_response(
        cls, data: dict[str, Any], received_at: Optional[datetime] = None
    ) -> "TokenResult":
        """Build a result from a token endpoint JSON body.

        ``expires_at`` is computed from ``expires_in`` relative to
        *received_at* (default: now).
        """
        received_at = received_at or datetime.now(timezone.utc)
        expires_in = int(data.get("expires_in") or 0)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            expires_at=received_at + timedelta(seconds=expires_in),
        )
