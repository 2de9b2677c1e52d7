"""Shared test fixtures for idpctl.

Provides isolated config directories, an in-memory secret store, a JWT
factory for access tokens, and helpers to drive the authenticators through
:class:`httpx.MockTransport`.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from idpctl.auth.secrets import MemoryBackend, SecretStore
from idpctl.config import ConfigStore
from idpctl.models import Tenant
from idpctl.output import OutputFormat, OutputManager, reset_output, set_output
from idpctl.scopes import REQUIRED_SCOPES


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The manager binds sys.stdout/sys.stderr at creation time; CliRunner swaps
    those streams per invocation.
    """
    yield
    reset_output()


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every idpctl path at subdirectories of tmp_path.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ("IDPCTL_CONFIG", "IDPCTL_SECRET_BACKEND", "IDPCTL_CLIENT_SECRET"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def config_path(isolated_config: Path) -> Path:
    return isolated_config / "config" / "idpctl" / "config.json"


@pytest.fixture
def config_store(config_path: Path) -> ConfigStore:
    return ConfigStore(config_path)


@pytest.fixture
def secret_store() -> SecretStore:
    return SecretStore(MemoryBackend())


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    """Build unsigned JWTs whose payload is *claims*.

    By default the audience points at the management API of
    ``acme.us.example.com``.
    """

    def _make(**claims: Any) -> str:
        claims.setdefault(
            "aud",
            [
                "https://acme.us.example.com/api/v2/",
                "https://acme.us.example.com/userinfo",
            ],
        )
        header = _b64url(json.dumps({"alg": "none", "typ": "JWT"}).encode())
        payload = _b64url(json.dumps(claims).encode())
        return f"{header}.{payload}.signature"

    return _make


@pytest.fixture
def make_tenant() -> Callable[..., Tenant]:
    """Build tenants with all required scopes and a token valid for an hour."""

    def _make(domain: str = "acme.us.example.com", **fields: Any) -> Tenant:
        fields.setdefault("name", domain.split(".")[0])
        fields.setdefault("scopes", list(REQUIRED_SCOPES))
        fields.setdefault("expires_at", datetime.now(timezone.utc) + timedelta(hours=1))
        return Tenant(domain=domain, **fields)

    return _make


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()
