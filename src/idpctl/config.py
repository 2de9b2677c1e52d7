"""Configuration management with XDG paths, atomic writes, and the tenant registry.

This module handles all persistent configuration for idpctl:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.idpctl/`` on macOS and Windows. See :func:`default_config_path` and
  :func:`get_data_dir`.
* **Tenant registry** -- A single :class:`~idpctl.models.Config` JSON file
  holding the install id, the default tenant, and one record per
  authenticated tenant, managed through :class:`ConfigStore`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) so that a crash mid-write never leaves a truncated
config behind. Directories are created ``0o700`` and files ``0o600``.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from idpctl.exceptions import (
    ConfigCorruptError,
    ConfigError,
    ConfigFileMissingError,
    NoAuthenticatedTenantsError,
    TenantNotFoundError,
)
from idpctl.models import Config, Tenant

logger = logging.getLogger(__name__)

_APP_NAME = "idpctl"
_CONFIG_FILENAME = "config.json"
_CONFIG_PATH_ENV = "IDPCTL_CONFIG"

_DIR_MODE = 0o700
_FILE_MODE = 0o600


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform uses XDG Base Directory paths (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_data_dir() -> Path:
    """Return the data directory (encrypted secrets), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/idpctl/`` (default ``~/.local/share/idpctl/``).
    On macOS/Windows: ``~/.idpctl/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
    return path


def default_config_path() -> Path:
    """Return the config file path, honouring the ``IDPCTL_CONFIG`` override.

    The parent directory is not created here; :func:`_atomic_write` does that
    on first save so that reading never has side effects.
    """
    override = os.environ.get(_CONFIG_PATH_ENV, "")
    if override:
        return Path(override).expanduser()
    if _is_xdg_platform():
        return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME / _CONFIG_FILENAME
    return _fallback_base_dir() / _CONFIG_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    Permissions are restricted to the owner before any content is written.
    On any failure the temp file is cleaned up.
    """
    path.parent.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, _FILE_MODE)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def serialize_config(config: Config) -> str:
    """Render *config* the way it is stored on disk: 4-space indented JSON."""
    return json.dumps(config.model_dump(mode="json"), indent=4) + "\n"


def _pick_default(tenants: dict[str, Tenant]) -> str:
    """Deterministically choose a default tenant: the smallest domain, or ``""``."""
    return min(tenants) if tenants else ""


# --- Tenant registry ---


class ConfigStore:
    """Multi-tenant registry persisted as a single JSON file.

    The file is read at most once per instance. :meth:`initialize` caches the
    outcome -- success, :class:`~idpctl.exceptions.ConfigFileMissingError`,
    or :class:`~idpctl.exceptions.ConfigCorruptError` -- and replays it on
    every later call. Every mutating method persists before returning.

    Args:
        path: Location of the config file. Defaults to
            :func:`default_config_path`.

    Example::

        store = ConfigStore()
        store.add_tenant(Tenant(name="acme", domain="acme.us.example.com"))
        assert store.config.default_tenant == "acme.us.example.com"
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path is not None else default_config_path()
        self._config = Config()
        self._lock = threading.Lock()
        self._initialized = False
        self._init_error: Optional[ConfigError] = None

    @property
    def path(self) -> Path:
        """The filesystem path of the config file."""
        return self._path

    @property
    def config(self) -> Config:
        """The in-memory config (empty until :meth:`initialize` succeeds)."""
        return self._config

    @property
    def install_id(self) -> str:
        return self._config.install_id

    @property
    def default_tenant(self) -> str:
        return self._config.default_tenant

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    def initialize(self) -> None:
        """Load the config file into memory once.

        Safe to call repeatedly and from several threads; only the first call
        touches the disk.

        Raises:
            ConfigFileMissingError: If the file does not exist (not logged in).
            ConfigCorruptError: If the file cannot be decoded.
        """
        with self._lock:
            if not self._initialized:
                try:
                    self._config = self._load_from_disk()
                except ConfigError as exc:
                    self._init_error = exc
                self._initialized = True
        if self._init_error is not None:
            raise self._init_error

    def _load_from_disk(self) -> Config:
        if not self._path.is_file():
            raise ConfigFileMissingError(f"config file is missing: {self._path}")
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Cannot read config at {self._path}: {exc}") from exc
        try:
            return Config.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ConfigCorruptError(f"Invalid config at {self._path}: {exc}") from exc

    def _save_to_disk(self) -> None:
        try:
            _atomic_write(self._path, serialize_config(self._config))
        except OSError as exc:
            raise ConfigError(f"Cannot write config to {self._path}: {exc}") from exc
        # The file now exists, so a cached "missing" outcome no longer holds.
        with self._lock:
            self._init_error = None
        logger.debug("Saved config to %s", self._path)

    def _initialize_allowing_missing(self) -> None:
        try:
            self.initialize()
        except ConfigFileMissingError:
            # First login: start from an empty config.
            pass

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def validate(self) -> None:
        """Check that at least one tenant is authenticated and repair the default.

        If tenants exist but ``default_tenant`` is empty or names an unknown
        domain, the lexicographically smallest domain becomes the default and
        the file is saved.

        Raises:
            ConfigFileMissingError: If nobody has logged in yet.
            ConfigCorruptError: If the file cannot be decoded.
            NoAuthenticatedTenantsError: If the file holds no tenants.
        """
        self.initialize()

        if not self._config.tenants:
            raise NoAuthenticatedTenantsError("not logged in. Try `idpctl login`")

        if self._config.default_tenant in self._config.tenants:
            return

        self._config.default_tenant = _pick_default(self._config.tenants)
        logger.debug("Repaired default tenant to %s", self._config.default_tenant)
        self._save_to_disk()

    def get_tenant(self, domain: str) -> Tenant:
        """Return the tenant registered under *domain*.

        Raises:
            TenantNotFoundError: If no such tenant is configured.
        """
        self.initialize()
        tenant = self._config.tenants.get(domain)
        if tenant is None:
            raise TenantNotFoundError(
                f"failed to find tenant: {domain}. Run 'idpctl tenants list' to see "
                "your configured tenants or run 'idpctl login' to configure a new tenant"
            )
        return tenant

    def list_all_tenants(self) -> list[Tenant]:
        """Return every configured tenant, sorted by domain."""
        self.initialize()
        return [self._config.tenants[d] for d in sorted(self._config.tenants)]

    def is_logged_in_with_tenant(self, domain: str = "") -> bool:
        """Return ``True`` if *domain* (or the default tenant) is configured."""
        try:
            self.initialize()
        except ConfigError:
            return False
        return (domain or self._config.default_tenant) in self._config.tenants

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def add_tenant(self, tenant: Tenant) -> None:
        """Insert or replace *tenant*, keyed by its domain, and persist.

        A missing config file is not an error here since this is how the
        first login creates it. The install id is generated on first use and
        the tenant becomes the default if none is set.

        Raises:
            ConfigCorruptError: If an existing file cannot be decoded.
        """
        self._initialize_allowing_missing()

        if not self._config.install_id:
            self._config.install_id = str(uuid.uuid4())

        if not self._config.default_tenant:
            self._config.default_tenant = tenant.domain

        self._config.tenants[tenant.domain] = tenant
        self._save_to_disk()

    def update_tenant(self, tenant: Tenant) -> None:
        """Persist a changed record for an already configured tenant.

        Raises:
            TenantNotFoundError: If the tenant is not configured.
        """
        self.get_tenant(tenant.domain)
        self._config.tenants[tenant.domain] = tenant
        self._save_to_disk()

    def remove_tenant(self, domain: str) -> None:
        """Delete the tenant registered under *domain* and persist.

        If the removed tenant was the default, the smallest remaining domain
        takes its place, or the default is cleared when none remain. Missing
        files and empty registries are a no-op.
        """
        try:
            self.initialize()
        except ConfigFileMissingError:
            return

        config = self._config
        if not config.default_tenant and not config.tenants:
            return

        if not config.tenants:
            # Stale default left by a damaged file.
            config.default_tenant = ""
            self._save_to_disk()
            return

        config.tenants.pop(domain, None)

        if config.default_tenant == domain or config.default_tenant not in config.tenants:
            config.default_tenant = _pick_default(config.tenants)

        self._save_to_disk()

    def set_default_tenant(self, domain: str) -> None:
        """Make *domain* the default tenant and persist.

        Raises:
            TenantNotFoundError: If the tenant is not configured.
        """
        tenant = self.get_tenant(domain)
        self._config.default_tenant = tenant.domain
        self._save_to_disk()

    def set_default_app_id_for_tenant(self, domain: str, app_id: str) -> None:
        """Record the default application id for *domain* and persist.

        Raises:
            TenantNotFoundError: If the tenant is not configured.
        """
        tenant = self.get_tenant(domain)
        self._config.tenants[tenant.domain] = tenant.model_copy(
            update={"default_app_id": app_id}
        )
        self._save_to_disk()


def load_config_store(path: Optional[Path] = None) -> ConfigStore:
    """Create a :class:`ConfigStore` and load it eagerly.

    Args:
        path: Optional config file path (defaults to :func:`default_config_path`).

    Returns:
        An initialised store.

    Raises:
        ConfigFileMissingError: If the file does not exist.
        ConfigCorruptError: If the file cannot be decoded.
    """
    store = ConfigStore(path)
    store.initialize()
    return store
