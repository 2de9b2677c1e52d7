"""Management API scopes requested by the CLI.

:data:`REQUIRED_SCOPES` is the baseline every device-flow login asks for.
Users may request more with ``idpctl login --scopes``; anything beyond the
baseline is reported by :meth:`~idpctl.models.Tenant.get_extra_requested_scopes`.
"""

from __future__ import annotations

REQUIRED_SCOPES: tuple[str, ...] = (
    "openid",
    "offline_access",  # for retrieving a refresh token
    "create:clients", "delete:clients", "read:clients", "update:clients",
    "read:client_grants",
    "create:resource_servers", "delete:resource_servers", "read:resource_servers", "update:resource_servers",
    "create:roles", "delete:roles", "read:roles", "update:roles",
    "create:rules", "delete:rules", "read:rules", "update:rules",
    "create:users", "delete:users", "read:users", "update:users",
    "read:branding", "update:branding",
    "create:phone_providers", "read:phone_providers", "update:phone_providers", "delete:phone_providers",
    "create:email_templates", "read:email_templates", "update:email_templates",
    "create:email_provider", "read:email_provider", "update:email_provider", "delete:email_provider",
    "read:flows", "read:forms", "read:flows_vault_connections",
    "read:connections", "update:connections", "read:connections_options", "update:connections_options",
    "read:client_keys", "read:logs", "read:tenant_settings", "update:tenant_settings",
    "read:custom_domains", "create:custom_domains", "update:custom_domains", "delete:custom_domains",
    "read:anomaly_blocks", "delete:anomaly_blocks",
    "create:log_streams", "delete:log_streams", "read:log_streams", "update:log_streams",
    "create:actions", "delete:actions", "read:actions", "update:actions",
    "create:organizations", "delete:organizations", "read:organizations", "update:organizations",
    "read:organization_members", "read:organization_member_roles", "read:organization_connections",
    "read:prompts", "update:prompts",
    "read:attack_protection", "update:attack_protection",
    "read:event_streams", "create:event_streams", "update:event_streams", "delete:event_streams",
    "read:network_acls", "create:network_acls", "update:network_acls", "delete:network_acls",
    "read:organization_invitations", "create:organization_invitations", "delete:organization_invitations",
)

_INTERACTIVE_ONLY_SCOPES = frozenset({"openid", "offline_access"})


def required_scopes_for_client_creds() -> list[str]:
    """Return the minimum scopes for tenants authenticated with client credentials.

    ``openid`` and ``offline_access`` only make sense for an interactive user
    login, so they are dropped; every other required scope is kept in order.
    """
    return [s for s in REQUIRED_SCOPES if s not in _INTERACTIVE_ONLY_SCOPES]


def merge_scopes(additional: list[str] | None = None) -> list[str]:
    """Return the required scopes followed by *additional* ones not already present."""
    scopes = list(REQUIRED_SCOPES)
    for scope in additional or []:
        if scope not in scopes:
            scopes.append(scope)
    return scopes
