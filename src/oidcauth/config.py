"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles the ambient configuration of oidcauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.oidcauth/`` on macOS and Windows. See :func:`get_data_dir`.
* **Session config** -- :func:`load_session_config` builds a
  :class:`~oidcauth.models.SessionConfig` from explicit overrides,
  ``OIDCAUTH_*`` environment variables, and defaults.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  (e.g. a confidential client's secret) from env vars, files, or the
  system keyring.

File writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so a crash never leaves a half-written file.
"""

from __future__ import annotations

import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

import keyring
from keyring.errors import KeyringError
from pydantic import ValidationError

from oidcauth.exceptions import ConfigError
from oidcauth.models import SessionConfig

_APP_NAME = "oidcauth"
_ENV_PREFIX = "OIDCAUTH_"

# SessionConfig fields that may be overridden from the environment.
_ENV_FIELDS = (
    "discovery_timeout",
    "exchange_timeout",
    "callback_timeout",
    "client_timeout",
    "use_pkce",
    "announce_url",
    "client_secret_source",
)


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_data_dir() -> Path:
    """Return the data directory, creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/oidcauth/`` (default ``~/.local/share/oidcauth/``).
    On macOS/Windows: ``~/.oidcauth/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        env_value = os.environ.get("XDG_DATA_HOME", "")
        base = Path(env_value) if env_value else Path.home() / ".local" / "share"
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: int = 0o600) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created next to *path* with permissions *mode*
    set before any content is written, so secrets are never world-readable,
    even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

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
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Session config ---


def load_session_config(**overrides: Any) -> SessionConfig:
    """Build a :class:`~oidcauth.models.SessionConfig` with precedence applied.

    Precedence (high to low):
        1. Keyword *overrides* (``None`` values are ignored)
        2. Environment variables (``OIDCAUTH_CALLBACK_TIMEOUT``, ...)
        3. Model defaults

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If an override or environment value fails validation.
    """
    values: dict[str, Any] = {}
    for field in _ENV_FIELDS:
        env_value = os.environ.get(f"{_ENV_PREFIX}{field.upper()}")
        if env_value:
            values[field] = env_value
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return SessionConfig.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid oidcauth configuration: {exc}") from exc


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"keyring:service:account"`` -- reads from the system keyring

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source.startswith("keyring:"):
        service, sep, account = source[8:].rpartition(":")
        if not sep or not service or not account:
            raise ConfigError(
                f"Keyring source must look like keyring:service:account (source: {source})"
            )
        try:
            value = keyring.get_password(service, account)
        except KeyringError as exc:
            raise ConfigError(f"Keyring lookup failed for {source}: {exc}") from exc
        if value is None:
            raise ConfigError(f"No keyring entry for {source}")
        return value

    raise ConfigError(f"Unknown credential source format: {source}")
