"""Exception hierarchy for idpctl.

All exceptions inherit from :class:`IdpctlError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`idpctl.exit_codes`.
The top-level error handler in :func:`idpctl.app.main` catches
``IdpctlError`` and exits with the appropriate code.

Subclass hierarchy::

    IdpctlError (exit 1)
    +-- InvalidUsageError             (exit 2)
    +-- AuthError                     (exit 3)
    |   +-- TransportError
    |   +-- DecodeError
    |   |   +-- AudienceNotFoundError
    |   +-- ProtocolError
    |   +-- DeviceCodeExpiredError
    |   +-- InvalidTokenError
    |   +-- MalformedTokenError
    |   +-- MissingScopesError
    +-- ConfigError                   (exit 1)
    |   +-- ConfigFileMissingError    (exit 5)
    |   +-- ConfigCorruptError
    |   +-- NoAuthenticatedTenantsError (exit 5)
    |   +-- TenantNotFoundError       (exit 4)
    +-- SecretStoreError              (exit 1)
        +-- SecretNotFoundError
"""

from __future__ import annotations

from idpctl.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_NOT_LOGGED_IN,
)


class IdpctlError(Exception):
    """Base exception for all idpctl errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`idpctl.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(IdpctlError):
    """Raised for invalid CLI arguments or flag combinations."""

    exit_code = EXIT_INVALID_USAGE


# --- Authentication ---


class AuthError(IdpctlError):
    """Raised when a token cannot be obtained, refreshed, or trusted."""

    exit_code = EXIT_AUTH_FAILURE


class TransportError(AuthError):
    """Network failure or non-2xx HTTP status from an OAuth endpoint.

    Attributes:
        status_code: The HTTP status, or ``None`` for network-level failures.
        body: The raw response body, when one was received.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodeError(AuthError):
    """An endpoint answered with malformed JSON, or a token could not be decoded."""


class AudienceNotFoundError(DecodeError):
    """The access token carries no management API audience."""


class ProtocolError(AuthError):
    """The authorization server returned a terminal OAuth error code.

    The message is the server's ``error_description`` verbatim so that it can
    be shown to the user unchanged.

    Attributes:
        error: The OAuth ``error`` code (e.g. ``"access_denied"``).
        description: The ``error_description`` sent by the server.
    """

    def __init__(self, error: str, description: str = ""):
        super().__init__(description or error)
        self.error = error
        self.description = description


class DeviceCodeExpiredError(AuthError):
    """The device code expired before the user completed authorization."""


class InvalidTokenError(AuthError):
    """The stored access token is missing or expired."""


class MalformedTokenError(AuthError):
    """The stored access token is not a well-formed JWT."""


class MissingScopesError(AuthError):
    """The tenant was authorized without every required scope.

    Attributes:
        missing_scopes: The required scopes absent from the tenant record.
    """

    def __init__(self, missing_scopes: list[str]):
        super().__init__(
            "token is missing required scopes: " + ", ".join(missing_scopes)
        )
        self.missing_scopes = missing_scopes


# --- Configuration ---


class ConfigError(IdpctlError):
    """Raised for configuration problems (unreadable or inconsistent config file)."""

    exit_code = EXIT_GENERIC_FAILURE


class ConfigFileMissingError(ConfigError):
    """The config file does not exist yet, i.e. nobody has logged in."""

    exit_code = EXIT_NOT_LOGGED_IN


class ConfigCorruptError(ConfigError):
    """The config file exists but cannot be decoded."""


class NoAuthenticatedTenantsError(ConfigError):
    """The config file exists but holds no tenants."""

    exit_code = EXIT_NOT_LOGGED_IN


class TenantNotFoundError(ConfigError):
    """The requested tenant domain is not in the config."""

    exit_code = EXIT_NOT_FOUND


# --- Secret storage ---


class SecretStoreError(IdpctlError):
    """A secret backend failed to read, write, or delete an entry."""


class SecretNotFoundError(SecretStoreError):
    """No secret is stored under the requested namespace and key."""
