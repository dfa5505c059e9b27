"""Tests for oidcauth.config: data paths, atomic writes, session config, credential sources."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest
from keyring.errors import KeyringError

from oidcauth.config import (
    _is_xdg_platform,
    atomic_write,
    get_data_dir,
    load_session_config,
    resolve_credential,
)
from oidcauth.exceptions import ConfigError
from oidcauth.models import SessionConfig


# ---------------------------------------------------------------------------
# Data directory
# ---------------------------------------------------------------------------


class TestDataDir:
    def test_xdg_data_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("oidcauth.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))

        path = get_data_dir()

        assert path == tmp_path / "xdg" / "oidcauth"
        assert path.is_dir()

    def test_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("oidcauth.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)

        assert get_data_dir() == tmp_path / ".local" / "share" / "oidcauth"

    def test_non_xdg_platform(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("oidcauth.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)

        assert get_data_dir() == tmp_path / ".oidcauth"

    @pytest.mark.parametrize(
        ("system", "expected"),
        [("Linux", True), ("FreeBSD", True), ("Darwin", False), ("Windows", False)],
    )
    def test_platform_detection(self, system: str, expected: bool) -> None:
        with patch("oidcauth.config.platform.system", return_value=system):
            assert _is_xdg_platform() is expected


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_writes_with_owner_only_permissions(self, tmp_path: Path) -> None:
        target = tmp_path / "secret.json"
        atomic_write(target, "{}")
        assert target.read_text(encoding="utf-8") == "{}"
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o600

    def test_custom_mode(self, tmp_path: Path) -> None:
        target = tmp_path / "public.txt"
        atomic_write(target, "hi", mode=0o644)
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o644

    def test_overwrites_and_creates_parents(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "file.txt"
        atomic_write(target, "old")
        atomic_write(target, "new")
        assert target.read_text(encoding="utf-8") == "new"

    def test_no_temp_files_left_on_error(self, tmp_path: Path) -> None:
        target = tmp_path / "file.txt"
        with patch("oidcauth.config.os.fsync", side_effect=OSError("disk error")):
            with pytest.raises(OSError, match="disk error"):
                atomic_write(target, "will fail")
        assert list(tmp_path.iterdir()) == []


# ---------------------------------------------------------------------------
# Session config
# ---------------------------------------------------------------------------


class TestLoadSessionConfig:
    def test_defaults(self) -> None:
        config = load_session_config()
        assert config == SessionConfig()
        assert config.callback_timeout == 300.0
        assert config.callback_path == "/callback"
        assert config.use_pkce is True
        assert config.announce_url is True

    def test_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OIDCAUTH_CALLBACK_TIMEOUT", "60")
        monkeypatch.setenv("OIDCAUTH_USE_PKCE", "false")
        monkeypatch.setenv("OIDCAUTH_CLIENT_SECRET_SOURCE", "env:SECRET")

        config = load_session_config()

        assert config.callback_timeout == 60.0
        assert config.use_pkce is False
        assert config.client_secret_source == "env:SECRET"

    def test_overrides_beat_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OIDCAUTH_EXCHANGE_TIMEOUT", "60")
        config = load_session_config(exchange_timeout=5, announce_url=None)
        assert config.exchange_timeout == 5.0
        assert config.announce_url is True

    def test_empty_environment_value_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OIDCAUTH_CLIENT_TIMEOUT", "")
        assert load_session_config().client_timeout == 30.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"callback_timeout": 0},
            {"callback_timeout": "soon"},
            {"callback_path": "callback"},
        ],
    )
    def test_invalid_overrides(self, overrides: dict[str, object]) -> None:
        with pytest.raises(ConfigError, match="Invalid oidcauth configuration"):
            load_session_config(**overrides)

    def test_invalid_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OIDCAUTH_DISCOVERY_TIMEOUT", "-1")
        with pytest.raises(ConfigError):
            load_session_config()


# ---------------------------------------------------------------------------
# Credential sources
# ---------------------------------------------------------------------------


class TestResolveCredential:
    def test_env_source(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_SECRET", "secret123")
        assert resolve_credential("env:MY_SECRET") == "secret123"

    def test_env_source_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        with pytest.raises(ConfigError, match="not set"):
            resolve_credential("env:NONEXISTENT_VAR")

    def test_file_source(self, tmp_path: Path) -> None:
        cred_file = tmp_path / "secret.txt"
        cred_file.write_text("  my-client-secret  \n", encoding="utf-8")
        assert resolve_credential(f"file:{cred_file}") == "my-client-secret"

    def test_file_source_missing_raises(self) -> None:
        with pytest.raises(ConfigError, match="not found"):
            resolve_credential("file:/nonexistent/path/secret.txt")

    def test_keyring_source(self) -> None:
        with patch("oidcauth.config.keyring.get_password", return_value="kr-secret") as mock_get:
            assert resolve_credential("keyring:my-app:client") == "kr-secret"
        mock_get.assert_called_once_with("my-app", "client")

    def test_keyring_service_with_colon(self) -> None:
        with patch("oidcauth.config.keyring.get_password", return_value="kr") as mock_get:
            resolve_credential("keyring:https://issuer.example.com:client")
        mock_get.assert_called_once_with("https://issuer.example.com", "client")

    def test_keyring_missing_entry(self) -> None:
        with patch("oidcauth.config.keyring.get_password", return_value=None):
            with pytest.raises(ConfigError, match="No keyring entry"):
                resolve_credential("keyring:my-app:client")

    def test_keyring_failure(self) -> None:
        with patch("oidcauth.config.keyring.get_password", side_effect=KeyringError("locked")):
            with pytest.raises(ConfigError, match="locked"):
                resolve_credential("keyring:my-app:client")

    @pytest.mark.parametrize("source", ["keyring:", "keyring:only-service", "keyring::account"])
    def test_keyring_malformed(self, source: str) -> None:
        with pytest.raises(ConfigError, match="keyring:service:account"):
            resolve_credential(source)

    def test_unknown_format(self) -> None:
        with pytest.raises(ConfigError, match="Unknown credential source"):
            resolve_credential("vault:secret/path")
