"""Built-in CLI commands for idpctl.

* :mod:`~idpctl.commands.auth` -- ``login``, ``logout`` and ``token``,
  registered directly on the root app.
* :mod:`~idpctl.commands.tenants` -- the ``tenants`` group (``list``,
  ``use``).

Commands share :func:`get_config_store` and :func:`get_lifecycle_manager`
to reach the stores, and :func:`exit_with_error` to report failures with
the right exit code.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from idpctl.auth.lifecycle import TokenLifecycleManager
from idpctl.auth.secrets import create_secret_store
from idpctl.config import ConfigStore
from idpctl.exceptions import ConfigFileMissingError, IdpctlError, NoAuthenticatedTenantsError
from idpctl.output import error, suggest


def get_config_store() -> ConfigStore:
    """Return a store over the default config file (see ``IDPCTL_CONFIG``)."""
    return ConfigStore()


def get_lifecycle_manager() -> TokenLifecycleManager:
    """Build a manager over the default config file and secret backend."""
    return TokenLifecycleManager(get_config_store(), create_secret_store())


def exit_with_error(exc: IdpctlError) -> NoReturn:
    """Print *exc* to stderr and exit with its exit code.

    Missing or empty configs are reported as "not logged in" with a hint to
    run ``idpctl login``.
    """
    if isinstance(exc, (ConfigFileMissingError, NoAuthenticatedTenantsError)):
        error("Not logged in.")
        suggest("Run `idpctl login` to authenticate.")
    else:
        error(str(exc))
    raise typer.Exit(code=exc.exit_code)
