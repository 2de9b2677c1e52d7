"""Token lifecycle: login completion, expiry checks, renewal and logout.

:class:`TokenLifecycleManager` is the only component that touches both the
:class:`~idpctl.config.ConfigStore` and the
:class:`~idpctl.auth.secrets.SecretStore`. The authenticators produce
:class:`~idpctl.models.TokenResult` values; this module decides where each
secret lives and keeps the tenant record in step.

Access tokens go to the secret store. When that write fails, the token is
kept in the tenant's plaintext ``access_token`` field instead so the CLI
remains usable on hosts without a secure store.
"""

from __future__ import annotations

import logging
from typing import Optional

from idpctl.auth.client_credentials import ClientCredentialsAuthenticator
from idpctl.auth.device_code import DeviceAuthenticator, decode_jwt_claims
from idpctl.auth.secrets import SecretStore
from idpctl.auth.token import TokenRetriever
from idpctl.config import ConfigStore
from idpctl.exceptions import (
    AuthError,
    DecodeError,
    InvalidTokenError,
    MalformedTokenError,
    MissingScopesError,
    SecretStoreError,
)
from idpctl.models import AuthMethod, ClientCredentials, Tenant, TokenResult
from idpctl.scopes import merge_scopes, required_scopes_for_client_creds

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Coordinate tokens between the authenticators and the two stores.

    Args:
        config_store: Registry of tenant records.
        secret_store: Secure storage for tokens and client secrets.
        device_authenticator: Used by the interactive login.
        token_retriever: Refreshes device-flow tenants.
        client_credentials_authenticator: Renews machine tenants.

    Any authenticator left as ``None`` is created with default endpoints.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        secret_store: SecretStore,
        device_authenticator: Optional[DeviceAuthenticator] = None,
        token_retriever: Optional[TokenRetriever] = None,
        client_credentials_authenticator: Optional[ClientCredentialsAuthenticator] = None,
    ) -> None:
        self.config_store = config_store
        self.secret_store = secret_store
        self.device_authenticator = device_authenticator or DeviceAuthenticator()
        self.token_retriever = token_retriever or TokenRetriever()
        self.client_credentials_authenticator = (
            client_credentials_authenticator or ClientCredentialsAuthenticator()
        )

    # -- reading --

    def get_access_token(self, tenant: Tenant) -> str:
        """Return the tenant's access token, preferring the secret store.

        Any secret store failure, or an empty stored value, falls back to the
        plaintext ``access_token`` field of the tenant record.
        """
        try:
            token = self.secret_store.get_access_token(tenant.domain)
        except SecretStoreError as exc:
            logger.debug("Access token for %s not in secret store: %s", tenant.domain, exc)
            return tenant.access_token
        return token or tenant.access_token

    def check_authentication_status(self, tenant: Tenant) -> None:
        """Verify the tenant can be used as is.

        Raises:
            MissingScopesError: If a device-flow tenant lacks required scopes.
            InvalidTokenError: If there is no access token or it is expired.
            MalformedTokenError: If the access token is not a well-formed JWT.
        """
        if tenant.is_authenticated_with_device_code_flow():
            missing = tenant.get_missing_required_scopes()
            if missing:
                raise MissingScopesError(missing)

        access_token = self.get_access_token(tenant)
        if not access_token or tenant.has_expired_token():
            raise InvalidTokenError("token is invalid")

        try:
            decode_jwt_claims(access_token)
        except DecodeError as exc:
            raise MalformedTokenError("corrupted authentication token detected") from exc

    # -- renewal --

    async def regenerate_access_token(self, tenant: Tenant) -> Tenant:
        """Obtain a new access token for *tenant* and persist it.

        Machine tenants repeat the client credentials exchange with the
        client secret from the secret store. Device-flow tenants use their
        stored refresh token.

        Returns:
            The updated tenant record.

        Raises:
            AuthError: If the stored secret is unavailable or the exchange
                fails.
        """
        if tenant.is_authenticated_with_client_credentials():
            try:
                client_secret = self.secret_store.get_client_secret(tenant.domain)
            except SecretStoreError as exc:
                raise AuthError(
                    f"failed to retrieve client secret from secret store: {exc}"
                ) from exc
            result = await self.client_credentials_authenticator.authenticate(
                ClientCredentials(
                    client_id=tenant.client_id,
                    client_secret=client_secret,
                    domain=tenant.domain,
                )
            )
        else:
            try:
                refresh_token = self.secret_store.get_refresh_token(tenant.domain)
            except SecretStoreError as exc:
                raise AuthError(
                    f"failed to retrieve refresh token from secret store: {exc}"
                ) from exc
            result = await self.token_retriever.refresh(tenant.domain, refresh_token)
            if result.refresh_token and result.refresh_token != refresh_token:
                self._store_refresh_token(tenant.domain, result.refresh_token)

        updated = tenant.model_copy(
            update={
                "access_token": self._store_access_token(tenant.domain, result.access_token),
                "expires_at": result.expires_at,
            }
        )
        self.config_store.update_tenant(updated)
        logger.debug("Renewed access token for %s, expires at %s", tenant.domain, updated.expires_at)
        return updated

    async def get_valid_access_token(self, domain: Optional[str] = None) -> str:
        """Return a usable bearer token, renewing it first when needed.

        Args:
            domain: Tenant domain; defaults to the default tenant.

        Raises:
            ConfigFileMissingError: If nobody has logged in yet.
            NoAuthenticatedTenantsError: If the config holds no tenants.
            TenantNotFoundError: If *domain* is unknown.
            MissingScopesError: If the tenant must log in again to grant
                newly required scopes.
            AuthError: If renewal fails.
        """
        if not domain:
            self.config_store.validate()
            domain = self.config_store.default_tenant
        tenant = self.config_store.get_tenant(domain)

        try:
            self.check_authentication_status(tenant)
        except (InvalidTokenError, MalformedTokenError) as exc:
            logger.debug("Access token for %s needs renewal: %s", domain, exc)
            try:
                tenant = await self.regenerate_access_token(tenant)
            except AuthError as renew_exc:
                raise AuthError(
                    f"failed to renew access token for {domain}: {renew_exc}\n"
                    f"Run `idpctl login` to authenticate again."
                ) from renew_exc
        return self.get_access_token(tenant)

    # -- login / logout --

    def complete_device_login(
        self, result: TokenResult, additional_scopes: Optional[list[str]] = None
    ) -> Tenant:
        """Persist the outcome of a device-flow login.

        Raises:
            AuthError: If *result* carries no tenant domain.
        """
        if not result.domain:
            raise AuthError("token result has no tenant domain")

        if result.refresh_token:
            self._store_refresh_token(result.domain, result.refresh_token)

        tenant = Tenant(
            name=result.tenant or result.domain.split(".")[0],
            domain=result.domain,
            access_token=self._store_access_token(result.domain, result.access_token),
            scopes=merge_scopes(additional_scopes),
            expires_at=result.expires_at,
            auth_method=AuthMethod.DEVICE_CODE,
        )
        self.config_store.add_tenant(tenant)
        return tenant

    def complete_client_credentials_login(
        self, creds: ClientCredentials, result: TokenResult
    ) -> Tenant:
        """Persist the outcome of a client credentials login."""
        try:
            self.secret_store.store_client_secret(creds.domain, creds.client_secret)
        except SecretStoreError as exc:
            logger.warning(
                "Could not store the client secret: %s. "
                "Expect to log in again when the access token expires.",
                exc,
            )

        tenant = Tenant(
            name=creds.domain.split(".")[0],
            domain=creds.domain,
            access_token=self._store_access_token(creds.domain, result.access_token),
            scopes=required_scopes_for_client_creds(),
            expires_at=result.expires_at,
            client_id=creds.client_id,
            auth_method=AuthMethod.CLIENT_CREDENTIALS,
        )
        self.config_store.add_tenant(tenant)
        return tenant

    def logout(self, domain: str) -> None:
        """Delete every secret for *domain*, then its tenant record.

        Raises:
            SecretStoreError: If a secret could not be deleted. The tenant
                record is kept in that case so logout can be retried.
        """
        self.secret_store.delete_secrets_for_tenant(domain)
        self.config_store.remove_tenant(domain)

    # -- helpers --

    def _store_access_token(self, domain: str, access_token: str) -> str:
        """Store *access_token* securely; return what the plaintext field should hold."""
        try:
            self.secret_store.store_access_token(domain, access_token)
        except SecretStoreError as exc:
            logger.warning(
                "Could not store the access token securely (%s); "
                "keeping it in the config file instead",
                exc,
            )
            # Older or partially written chunks would shadow the plaintext copy.
            try:
                self.secret_store.delete_access_token(domain)
            except SecretStoreError as delete_exc:
                logger.warning("Could not clear the stored access token: %s", delete_exc)
            return access_token
        return ""

    def _store_refresh_token(self, domain: str, refresh_token: str) -> None:
        try:
            self.secret_store.store_refresh_token(domain, refresh_token)
        except SecretStoreError as exc:
            logger.warning(
                "Could not store the refresh token: %s. "
                "Expect to log in again once the access token expires.",
                exc,
            )
