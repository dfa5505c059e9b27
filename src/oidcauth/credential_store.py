"""Refresh-token storage keyed by (service, account).

A session stores its refresh token with ``service`` = canonical issuer and
``account`` = client id. Two backends are provided:

- :class:`KeyringCredentialStore` -- the operating system's secure store via
  the ``keyring`` library (macOS Keychain, Secret Service on Linux, Windows
  Credential Manager). This is the default.
- :class:`FileCredentialStore` -- a JSON file per service under
  ``<data_dir>/credentials/``, written atomically with ``0o600``
  permissions, for headless hosts without a keyring backend.

Both report a missing entry as
:class:`~oidcauth.exceptions.CredentialNotFoundError` and any backend
failure as :class:`~oidcauth.exceptions.StoreError`; a failure is never
reported as "not found".

See Also:
    :meth:`oidcauth.session.Session.login_with_cache` -- the consumer.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Optional, Protocol

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError
from pydantic import ValidationError

from oidcauth.config import atomic_write, get_data_dir
from oidcauth.exceptions import CredentialNotFoundError, StoreError
from oidcauth.models import CredentialEntry, CredentialFile

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Get, set, and delete a secret identified by ``(service, account)``."""

    def get(self, service: str, account: str) -> str:
        """Return the stored secret.

        Raises:
            CredentialNotFoundError: If nothing is stored for the key.
            StoreError: If the backend fails.
        """
        ...

    def set(self, service: str, account: str, secret: str) -> None:
        """Create or overwrite the secret for the key.

        Raises:
            StoreError: If the backend fails.
        """
        ...

    def delete(self, service: str, account: str) -> None:
        """Remove the secret for the key.

        Raises:
            CredentialNotFoundError: If nothing is stored for the key.
            StoreError: If the backend fails.
        """
        ...


class KeyringCredentialStore:
    """Credential store backed by the ``keyring`` library.

    Args:
        backend: Explicit keyring backend to use. When ``None``, the
            process-wide backend chosen by ``keyring`` is used.

    Example::

        store = KeyringCredentialStore()
        store.set("https://issuer.example.com", "my-client", "rt-123")
        assert store.get("https://issuer.example.com", "my-client") == "rt-123"
    """

    def __init__(self, backend: Optional[KeyringBackend] = None) -> None:
        self._backend = backend

    @property
    def backend(self) -> KeyringBackend:
        return self._backend if self._backend is not None else keyring.get_keyring()

    def get(self, service: str, account: str) -> str:
        try:
            secret = self.backend.get_password(service, account)
        except KeyringError as exc:
            raise StoreError(f"Keyring lookup failed for {service}: {exc}") from exc
        if secret is None:
            raise CredentialNotFoundError(
                f"No credential stored for account '{account}' at {service}"
            )
        return secret

    def set(self, service: str, account: str, secret: str) -> None:
        try:
            self.backend.set_password(service, account, secret)
        except KeyringError as exc:
            raise StoreError(f"Keyring write failed for {service}: {exc}") from exc
        logger.debug("Stored credential for account '%s' at %s in keyring", account, service)

    def delete(self, service: str, account: str) -> None:
        try:
            self.backend.delete_password(service, account)
        except PasswordDeleteError as exc:
            raise CredentialNotFoundError(
                f"No credential stored for account '{account}' at {service}"
            ) from exc
        except KeyringError as exc:
            raise StoreError(f"Keyring delete failed for {service}: {exc}") from exc
        logger.debug("Deleted credential for account '%s' at %s from keyring", account, service)


def _credentials_dir() -> Path:
    """Return the credentials directory, creating it if needed.

    Raises:
        StoreError: If the directory cannot be created.
    """
    try:
        path = get_data_dir() / "credentials"
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreError(f"Cannot create credentials directory: {exc}") from exc
    return path


_file_locks: dict[str, threading.Lock] = {}
_file_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    """Return the process-wide lock serialising updates to *path*."""
    key = str(path.absolute())
    with _file_locks_guard:
        lock = _file_locks.get(key)
        if lock is None:
            lock = _file_locks[key] = threading.Lock()
        return lock


class FileCredentialStore:
    """Credential store writing one JSON file per service.

    Services are issuer URLs, so file names are derived from a SHA-256 of
    the service string. All accounts for a service share one file. Updates
    to a file are serialised across every instance in the process, so
    concurrent writes for different accounts are not lost.

    Args:
        directory: Directory for credential files. Defaults to
            ``<data_dir>/credentials``.
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory if self._directory is not None else _credentials_dir()

    def path_for(self, service: str) -> Path:
        """The filesystem path holding credentials for *service*."""
        digest = hashlib.sha256(service.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.json"

    def get(self, service: str, account: str) -> str:
        path = self.path_for(service)
        with _lock_for(path):
            data = self._load(service, path)
        entry = data.accounts.get(account) if data is not None else None
        if entry is None:
            raise CredentialNotFoundError(
                f"No credential stored for account '{account}' at {service}"
            )
        return entry.secret

    def set(self, service: str, account: str, secret: str) -> None:
        path = self.path_for(service)
        with _lock_for(path):
            data = self._load(service, path) or CredentialFile(service=service)
            data.accounts[account] = CredentialEntry(secret=secret)
            self._save(path, data)

    def delete(self, service: str, account: str) -> None:
        path = self.path_for(service)
        with _lock_for(path):
            data = self._load(service, path)
            if data is None or account not in data.accounts:
                raise CredentialNotFoundError(
                    f"No credential stored for account '{account}' at {service}"
                )
            del data.accounts[account]
            if data.accounts:
                self._save(path, data)
                return
            try:
                path.unlink()
            except OSError as exc:
                raise StoreError(f"Cannot remove credential file: {exc}") from exc

    def _load(self, service: str, path: Path) -> Optional[CredentialFile]:
        if not path.is_file():
            return None
        try:
            data = CredentialFile.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except OSError as exc:
            raise StoreError(f"Cannot read credential file {path}: {exc}") from exc
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StoreError(f"Corrupt credential file {path}: {exc}") from exc
        if data.service != service:
            raise StoreError(f"Credential file {path} belongs to a different service")
        return data

    def _save(self, path: Path, data: CredentialFile) -> None:
        try:
            atomic_write(path, data.model_dump_json(indent=2) + "\n")
        except OSError as exc:
            raise StoreError(f"Cannot write credential file {path}: {exc}") from exc
        logger.debug("Stored credential file %s", path)
