"""Secure storage for tokens and client secrets.

Secrets never go into the plaintext config file when it can be avoided.
They are kept in a :class:`SecretBackend` under a ``(namespace, key)`` pair,
where the namespace is a fixed label per secret kind and the key is the
tenant domain.

Three backends are provided:

1. :class:`KeyringBackend` (primary): the OS keychain via the ``keyring``
   library -- macOS Keychain, Windows Credential Locker, Secret Service on
   Linux.
2. :class:`EncryptedFileBackend` (fallback): a Fernet-encrypted file in the
   data directory, keyed from machine-specific identifiers. Used on headless
   hosts without a usable keyring.
3. :class:`MemoryBackend`: process-local, for tests and throwaway sessions.

:class:`SecretStore` layers the per-kind helpers on top, including transparent
chunking of access tokens, which can exceed the per-entry size limit of some
OS keychains.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
import platform
import socket
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from idpctl.config import _atomic_write, get_data_dir
from idpctl.exceptions import SecretNotFoundError, SecretStoreError

if TYPE_CHECKING:
    from cryptography.fernet import Fernet

logger = logging.getLogger(__name__)

SECRET_REFRESH_TOKEN = "idpctl Refresh Token"
SECRET_CLIENT_SECRET = "idpctl Client Secret"
SECRET_ACCESS_TOKEN = "idpctl Access Token"

ACCESS_TOKEN_CHUNK_SIZE = 2048
"""Largest slice of an access token stored in a single entry."""

ACCESS_TOKEN_MAX_CHUNKS = 50
"""Upper bound on chunks, so a corrupted store can never loop forever."""

_BACKEND_ENV = "IDPCTL_SECRET_BACKEND"
_ENCRYPTED_FILE = "secrets.enc"


# --- Backends ---


class SecretBackend(ABC):
    """Abstract key/value secret backend.

    Implementations raise :class:`~idpctl.exceptions.SecretNotFoundError`
    for absent entries and :class:`~idpctl.exceptions.SecretStoreError` for
    every other failure, so callers can tell "nothing stored" apart from
    "store unusable".
    """

    name: str = "abstract"

    @abstractmethod
    def set(self, namespace: str, key: str, value: str) -> None:
        """Store *value* under ``(namespace, key)``, replacing any previous value."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> str:
        """Return the value stored under ``(namespace, key)``.

        Raises:
            SecretNotFoundError: If nothing is stored there.
        """

    @abstractmethod
    def delete(self, namespace: str, key: str) -> None:
        """Remove the value stored under ``(namespace, key)``.

        Raises:
            SecretNotFoundError: If nothing is stored there.
        """


class MemoryBackend(SecretBackend):
    """In-process backend; secrets vanish when the process exits."""

    name = "memory"

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}

    def set(self, namespace: str, key: str, value: str) -> None:
        self._entries[(namespace, key)] = value

    def get(self, namespace: str, key: str) -> str:
        try:
            return self._entries[(namespace, key)]
        except KeyError:
            raise SecretNotFoundError(f"secret not found: {namespace} / {key}") from None

    def delete(self, namespace: str, key: str) -> None:
        if self._entries.pop((namespace, key), None) is None:
            raise SecretNotFoundError(f"secret not found: {namespace} / {key}")


class KeyringBackend(SecretBackend):
    """Backend using the OS keychain through the ``keyring`` library.

    The namespace becomes the keyring *service* and the tenant domain the
    *username*.
    """

    name = "keyring"

    # Secret Service backends can raise DBus and permission errors outside
    # the KeyringError hierarchy.

    def set(self, namespace: str, key: str, value: str) -> None:
        import keyring

        try:
            keyring.set_password(namespace, key, value)
        except Exception as exc:
            raise SecretStoreError(f"Failed to write {namespace} to keyring: {exc}") from exc

    def get(self, namespace: str, key: str) -> str:
        import keyring

        try:
            value = keyring.get_password(namespace, key)
        except Exception as exc:
            raise SecretStoreError(f"Failed to read {namespace} from keyring: {exc}") from exc
        if value is None:
            raise SecretNotFoundError(f"secret not found in keyring: {namespace} / {key}")
        return value

    def delete(self, namespace: str, key: str) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(namespace, key)
        except PasswordDeleteError as exc:
            raise SecretNotFoundError(
                f"secret not found in keyring: {namespace} / {key}"
            ) from exc
        except Exception as exc:
            raise SecretStoreError(f"Failed to delete {namespace} from keyring: {exc}") from exc


class EncryptedFileBackend(SecretBackend):
    """Fallback backend storing all secrets in one Fernet-encrypted file.

    The encryption key is derived with PBKDF2 from machine-specific
    identifiers, so the file is useless when copied to another host. This is
    weaker than a keychain but keeps tokens out of the plaintext config.

    Args:
        path: Location of the encrypted file. Defaults to
            ``<data_dir>/secrets.enc``.
    """

    name = "encrypted_file"

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path if path is not None else get_data_dir() / _ENCRYPTED_FILE
        self._key: bytes | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _get_machine_id(self) -> str:
        """Return a string that is unique and stable for this machine."""
        if platform.system() == "Linux":
            for candidate in ("/etc/machine-id", "/var/lib/dbus/machine-id"):
                try:
                    with open(candidate, encoding="utf-8") as f:
                        machine_id = f.read().strip()
                except OSError:
                    continue
                if machine_id:
                    return machine_id
        return socket.gethostname()

    def _derive_key(self) -> bytes:
        if self._key is not None:
            return self._key
        material = f"{self._get_machine_id()}:{socket.gethostname()}:idpctl-secrets"
        raw = hashlib.pbkdf2_hmac(
            "sha256", material.encode(), b"idpctl-v1", iterations=100_000, dklen=32
        )
        # Fernet requires a URL-safe base64 encoded 32-byte key
        self._key = base64.urlsafe_b64encode(raw)
        return self._key

    def _fernet(self) -> "Fernet":
        from cryptography.fernet import Fernet

        return Fernet(self._derive_key())

    def _read_all(self) -> dict[str, dict[str, str]]:
        if not self._path.is_file():
            return {}
        from cryptography.fernet import InvalidToken

        try:
            decrypted = self._fernet().decrypt(self._path.read_bytes())
        except (InvalidToken, OSError) as exc:
            raise SecretStoreError(
                f"Failed to decrypt {self._path} (corrupted or created on another machine): {exc}"
            ) from exc
        try:
            data = json.loads(decrypted.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise SecretStoreError(f"Failed to parse {self._path}: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, dict[str, str]]) -> None:
        encrypted = self._fernet().encrypt(json.dumps(data).encode("utf-8"))
        try:
            _atomic_write(self._path, encrypted.decode("ascii"))
        except OSError as exc:
            raise SecretStoreError(f"Failed to write {self._path}: {exc}") from exc

    def set(self, namespace: str, key: str, value: str) -> None:
        data = self._read_all()
        data.setdefault(namespace, {})[key] = value
        self._write_all(data)

    def get(self, namespace: str, key: str) -> str:
        try:
            return self._read_all()[namespace][key]
        except KeyError:
            raise SecretNotFoundError(f"secret not found: {namespace} / {key}") from None

    def delete(self, namespace: str, key: str) -> None:
        data = self._read_all()
        entries = data.get(namespace, {})
        if key not in entries:
            raise SecretNotFoundError(f"secret not found: {namespace} / {key}")
        del entries[key]
        if not entries:
            del data[namespace]
        self._write_all(data)


def is_keyring_available() -> bool:
    """Check whether a functional keyring backend is installed.

    Performs a write/read/delete cycle against a throwaway entry, since some
    backends only fail on first use (e.g. a locked Secret Service on Linux).
    """
    import keyring
    from keyring.backends.fail import Keyring as FailKeyring

    try:
        if isinstance(keyring.get_keyring(), FailKeyring):
            logger.debug("Keyring unavailable: no usable backend")
            return False

        keyring.set_password("idpctl-availability-check", "check", "ok")
        ok = keyring.get_password("idpctl-availability-check", "check") == "ok"
        keyring.delete_password("idpctl-availability-check", "check")
    except Exception as exc:
        logger.debug("Keyring unavailable: %s: %s", type(exc).__name__, exc)
        return False
    return ok


# --- Store ---


def _chunk(value: str, size: int) -> list[str]:
    return [value[i : i + size] for i in range(0, len(value), size)]


def _access_token_namespaces() -> list[str]:
    return [f"{SECRET_ACCESS_TOKEN} {i}" for i in range(ACCESS_TOKEN_MAX_CHUNKS)]


class SecretStore:
    """Per-kind secret helpers on top of a :class:`SecretBackend`.

    Args:
        backend: The backend holding the entries.

    Example::

        store = SecretStore(MemoryBackend())
        store.store_refresh_token("acme.us.example.com", "rt-123")
        assert store.get_refresh_token("acme.us.example.com") == "rt-123"
    """

    def __init__(self, backend: SecretBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> SecretBackend:
        return self._backend

    def store_refresh_token(self, domain: str, value: str) -> None:
        self._backend.set(SECRET_REFRESH_TOKEN, domain, value)

    def get_refresh_token(self, domain: str) -> str:
        return self._backend.get(SECRET_REFRESH_TOKEN, domain)

    def store_client_secret(self, domain: str, value: str) -> None:
        self._backend.set(SECRET_CLIENT_SECRET, domain, value)

    def get_client_secret(self, domain: str) -> str:
        return self._backend.get(SECRET_CLIENT_SECRET, domain)

    def store_access_token(self, domain: str, value: str) -> None:
        """Store an access token split into ``"<label> N"`` chunks.

        Chunks left over from a longer previous token are removed so they are
        never concatenated onto the new one.

        Raises:
            SecretStoreError: If the token needs more than
                :data:`ACCESS_TOKEN_MAX_CHUNKS` chunks or the backend fails.
        """
        chunks = _chunk(value, ACCESS_TOKEN_CHUNK_SIZE)
        if len(chunks) > ACCESS_TOKEN_MAX_CHUNKS:
            raise SecretStoreError(
                f"access token too large to store ({len(value)} characters)"
            )

        for i in range(len(chunks), ACCESS_TOKEN_MAX_CHUNKS):
            try:
                self._backend.delete(f"{SECRET_ACCESS_TOKEN} {i}", domain)
            except SecretNotFoundError:
                break

        for i, chunk in enumerate(chunks):
            self._backend.set(f"{SECRET_ACCESS_TOKEN} {i}", domain, chunk)

    def get_access_token(self, domain: str) -> str:
        """Reassemble an access token from its chunks.

        Raises:
            SecretNotFoundError: If not even the first chunk exists.
        """
        parts: list[str] = []
        for i in range(ACCESS_TOKEN_MAX_CHUNKS):
            try:
                parts.append(self._backend.get(f"{SECRET_ACCESS_TOKEN} {i}", domain))
            except SecretNotFoundError:
                if i == 0:
                    raise
                break
        return "".join(parts)

    def delete_access_token(self, domain: str) -> None:
        """Delete every access-token chunk stored for *domain*.

        Raises:
            SecretStoreError: If any chunk could not be deleted.
        """
        self._delete_all(_access_token_namespaces(), domain)

    def delete_secrets_for_tenant(self, domain: str) -> None:
        """Delete every secret kind stored for *domain*.

        Absent entries are ignored, so the call is idempotent. Other failures
        are collected and raised together once every deletion was attempted.

        Raises:
            SecretStoreError: If any deletion failed for a reason other than
                the entry not existing.
        """
        self._delete_all(
            [SECRET_REFRESH_TOKEN, SECRET_CLIENT_SECRET] + _access_token_namespaces(), domain
        )

    def _delete_all(self, namespaces: list[str], domain: str) -> None:
        failures: list[str] = []
        for namespace in namespaces:
            try:
                self._backend.delete(namespace, domain)
            except SecretNotFoundError:
                continue
            except SecretStoreError as exc:
                failures.append(str(exc))

        if failures:
            raise SecretStoreError(", ".join(failures))


def create_secret_store(backend: Optional[str] = None) -> SecretStore:
    """Create a :class:`SecretStore` with the most secure available backend.

    Args:
        backend: ``"keyring"``, ``"file"``, or ``"memory"``. Defaults to the
            ``IDPCTL_SECRET_BACKEND`` environment variable, then to the
            keyring when one is usable and the encrypted file otherwise.

    Raises:
        SecretStoreError: If *backend* names an unknown backend.
    """
    choice = backend or os.environ.get(_BACKEND_ENV, "")
    if choice == "memory":
        return SecretStore(MemoryBackend())
    if choice == "file":
        return SecretStore(EncryptedFileBackend())
    if choice == "keyring":
        return SecretStore(KeyringBackend())
    if choice:
        raise SecretStoreError(
            f"Unknown secret backend '{choice}'. Available: keyring, file, memory"
        )

    if is_keyring_available():
        return SecretStore(KeyringBackend())
    logger.warning("No usable keyring found; secrets go to an encrypted file instead")
    return SecretStore(EncryptedFileBackend())
