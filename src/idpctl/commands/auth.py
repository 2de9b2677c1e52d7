"""Auth commands -- log in, log out, and print tokens.

Typical workflow::

    idpctl login                          # interactive device flow
    idpctl login --domain acme.us.example.com \\
        --client-id ID --client-secret SECRET   # machine login
    idpctl token                          # print a valid token for scripts
    idpctl logout acme.us.example.com
"""

from __future__ import annotations

import asyncio
import webbrowser
from typing import Optional

import typer

from idpctl import commands
from idpctl.auth.device_code import ensure_audience_url
from idpctl.auth.lifecycle import TokenLifecycleManager
from idpctl.exceptions import IdpctlError, InvalidUsageError
from idpctl.models import ClientCredentials, Tenant
from idpctl.output import info, print_data, success, suggest, warning


def _split_scopes(scopes: Optional[str]) -> list[str]:
    return [s.strip() for s in (scopes or "").split(",") if s.strip()]


async def _device_login(
    manager: TokenLifecycleManager,
    domain: Optional[str],
    scopes: list[str],
    open_browser: bool,
) -> Tenant:
    authenticator = manager.device_authenticator
    audience = ensure_audience_url(domain) if domain else None
    state = await authenticator.request_device_code(scopes, audience=audience)

    info(f"Your device confirmation code is: {state.user_code}")
    opened = False
    if open_browser:
        try:
            opened = webbrowser.open(state.verification_uri)
        except webbrowser.Error:
            opened = False
    if not opened:
        info(f"Open the following URL in a browser to continue: {state.verification_uri}")
    info("Waiting for login to complete in the browser...")

    result = await authenticator.poll_for_token(state)
    return manager.complete_device_login(result, scopes)


async def _machine_login(
    manager: TokenLifecycleManager, creds: ClientCredentials
) -> Tenant:
    result = await manager.client_credentials_authenticator.authenticate(creds)
    return manager.complete_client_credentials_login(creds, result)


def login(
    domain: Optional[str] = typer.Option(
        None, "--domain", "-d", help="Tenant domain to log in to."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Client id of a machine-to-machine application."
    ),
    client_secret: Optional[str] = typer.Option(
        None,
        "--client-secret",
        envvar="IDPCTL_CLIENT_SECRET",
        help="Client secret of a machine-to-machine application.",
    ),
    scopes: Optional[str] = typer.Option(
        None, "--scopes", help="Comma-separated scopes to request in addition to the defaults."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the login URL instead of opening a browser."
    ),
) -> None:
    """Authenticate against a tenant.

    Without client credentials, runs the interactive device login. With
    ``--domain``, ``--client-id`` and ``--client-secret``, logs in as a
    machine-to-machine application instead.
    """
    manager = commands.get_lifecycle_manager()
    try:
        if client_id or client_secret:
            if not (domain and client_id and client_secret):
                raise InvalidUsageError(
                    "--domain, --client-id and --client-secret are required "
                    "together for a machine login"
                )
            creds = ClientCredentials(
                client_id=client_id, client_secret=client_secret, domain=domain
            )
            tenant = asyncio.run(_machine_login(manager, creds))
        else:
            tenant = asyncio.run(
                _device_login(manager, domain, _split_scopes(scopes), not no_browser)
            )
    except IdpctlError as exc:
        commands.exit_with_error(exc)

    success("Successfully logged in.")
    info(f"Tenant: {tenant.domain}")
    if tenant.access_token:
        warning("The access token is stored in the config file in plain text.")


def logout(
    domain: Optional[str] = typer.Argument(
        None, help="Tenant domain to log out of. Defaults to the default tenant."
    ),
) -> None:
    """Log out of a tenant and delete its stored secrets."""
    manager = commands.get_lifecycle_manager()
    try:
        if not domain:
            manager.config_store.validate()
            domain = manager.config_store.default_tenant
        manager.config_store.get_tenant(domain)
        manager.logout(domain)
    except IdpctlError as exc:
        commands.exit_with_error(exc)

    success(f"Successfully logged out tenant: {domain}")
    remaining = manager.config_store.default_tenant
    if remaining:
        suggest(f"Default tenant is now {remaining}")


def token(
    domain: Optional[str] = typer.Argument(
        None, help="Tenant domain. Defaults to the default tenant."
    ),
) -> None:
    """Print a valid management API access token to stdout.

    The token is renewed first when it is missing or about to expire.
    """
    manager = commands.get_lifecycle_manager()
    try:
        access_token = asyncio.run(manager.get_valid_access_token(domain))
    except IdpctlError as exc:
        commands.exit_with_error(exc)
    print_data(access_token)
