"""idpctl -- command-line client for a multi-tenant identity platform.

This package holds the authentication and session core of the CLI: the
OAuth2 Device Authorization and Client Credentials flows, access/refresh
token lifecycle management, and the multi-tenant configuration store that
persists the results next to a secure secret store.

Typical workflow::

    idpctl login                      # device flow, opens a browser
    idpctl login --domain acme.us.example.com \\
        --client-id ... --client-secret ...   # machine login
    idpctl tenants use acme.us.example.com
    idpctl token                      # print a fresh access token

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware paths and the multi-tenant :class:`ConfigStore`.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
