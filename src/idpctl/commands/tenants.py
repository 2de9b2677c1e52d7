"""Tenant commands -- inspect and switch between authenticated tenants."""

from __future__ import annotations

from datetime import datetime, timezone

import typer

from idpctl import commands
from idpctl.exceptions import IdpctlError
from idpctl.output import print_table, success

tenants_app = typer.Typer(no_args_is_help=True)


@tenants_app.command("list")
def tenants_list() -> None:
    """List authenticated tenants; the default one is marked with ``*``."""
    store = commands.get_config_store()
    try:
        store.validate()
        tenants = store.list_all_tenants()
    except IdpctlError as exc:
        commands.exit_with_error(exc)

    now = datetime.now(timezone.utc)
    rows = [
        [
            "*" if t.domain == store.default_tenant else "",
            t.domain,
            t.auth_method.value,
            "expired" if t.has_expired_token(now) else t.expires_at.isoformat(),
        ]
        for t in tenants
    ]
    print_table(["", "Domain", "Auth", "Token expires"], rows, title="Tenants")


@tenants_app.command("use")
def tenants_use(
    domain: str = typer.Argument(help="Domain of the tenant to make the default."),
) -> None:
    """Set the default tenant used when no domain is given."""
    store = commands.get_config_store()
    try:
        store.set_default_tenant(domain)
    except IdpctlError as exc:
        commands.exit_with_error(exc)
    success(f"Default tenant switched to: {domain}")
