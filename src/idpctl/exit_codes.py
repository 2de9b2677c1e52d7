"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~idpctl.exceptions.IdpctlError` subclass.
Shell wrappers and CI scripts can inspect the exit code to tell a missing
login apart from a network failure without parsing stderr.

Example::

    $ idpctl token
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the refresh token was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or a token could not be obtained."""

EXIT_NOT_FOUND = 4
"""The requested tenant is not configured."""

EXIT_NOT_LOGGED_IN = 5
"""No tenant has been authenticated yet."""
