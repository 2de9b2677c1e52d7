"""Authentication for idpctl.

This package obtains, stores, and renews management API tokens:

- :class:`DeviceAuthenticator` -- interactive login via the OAuth2 device
  authorization grant.
- :class:`ClientCredentialsAuthenticator` -- machine login with a client id
  and secret.
- :class:`TokenRetriever` -- refresh-token grant for device-flow tenants.
- :class:`SecretStore` -- secure storage for tokens and client secrets.
- :class:`TokenLifecycleManager` -- ties the above to the tenant registry.

Typical usage::

    from idpctl.auth import TokenLifecycleManager, create_secret_store
    from idpctl.config import ConfigStore

    manager = TokenLifecycleManager(ConfigStore(), create_secret_store())
    token = asyncio.run(manager.get_valid_access_token())
"""

from idpctl.auth.client_credentials import ClientCredentialsAuthenticator
from idpctl.auth.device_code import DeviceAuthenticator, ensure_audience_url, parse_tenant
from idpctl.auth.lifecycle import TokenLifecycleManager
from idpctl.auth.secrets import SecretStore, create_secret_store
from idpctl.auth.token import TokenRetriever

__all__ = [
    "ClientCredentialsAuthenticator",
    "DeviceAuthenticator",
    "SecretStore",
    "TokenLifecycleManager",
    "TokenRetriever",
    "create_secret_store",
    "ensure_audience_url",
    "parse_tenant",
]
