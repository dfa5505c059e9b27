"""Tests for the platform browser launchers."""

from __future__ import annotations

import subprocess
import sys
import threading
import time
from unittest.mock import patch

import pytest

from oidcauth.browser import (
    CommandLauncher,
    DarwinLauncher,
    WindowsLauncher,
    XdgLauncher,
    default_launcher,
)
from oidcauth.exceptions import BrowserLaunchError

URL = "https://issuer.example.com/authorize?client_id=abc&state=s"


class TestDefaultLauncher:
    @pytest.mark.parametrize(
        ("system", "expected"),
        [
            ("Darwin", DarwinLauncher),
            ("Windows", WindowsLauncher),
            ("Linux", XdgLauncher),
            ("FreeBSD", XdgLauncher),
        ],
    )
    def test_selection(self, system: str, expected: type) -> None:
        assert isinstance(default_launcher(system), expected)

    def test_uses_running_platform(self) -> None:
        with patch("oidcauth.browser.platform.system", return_value="Darwin"):
            assert isinstance(default_launcher(), DarwinLauncher)


class TestCommandLaunchers:
    def test_linux_command(self) -> None:
        assert XdgLauncher().argv(URL) == ["xdg-open", URL]

    def test_darwin_command(self) -> None:
        assert DarwinLauncher().argv(URL) == ["open", URL]

    def test_windows_command_escapes_ampersand(self) -> None:
        argv = WindowsLauncher().argv(URL)
        assert argv[:4] == ["cmd", "/c", "start", ""]
        assert argv[4] == URL.replace("&", "^&")

    def test_open_spawns_without_waiting(self) -> None:
        exited = threading.Event()
        with patch("oidcauth.browser.subprocess.Popen") as mock_popen:
            mock_popen.return_value.wait.side_effect = lambda: exited.wait(5)
            XdgLauncher().open(URL)
            # open() returned while the child is still running.
            assert not exited.is_set()
            exited.set()

        mock_popen.assert_called_once()
        assert mock_popen.call_args.args[0] == ["xdg-open", URL]
        assert mock_popen.call_args.kwargs["stdout"] is subprocess.DEVNULL

    def test_child_is_reaped(self) -> None:
        class PythonLauncher(CommandLauncher):
            command = (sys.executable, "-c", "pass")

        spawned: list[subprocess.Popen] = []
        real_popen = subprocess.Popen

        def recording_popen(*args: object, **kwargs: object) -> subprocess.Popen:
            process = real_popen(*args, **kwargs)  # type: ignore[call-overload]
            spawned.append(process)
            return process

        with patch("oidcauth.browser.subprocess.Popen", side_effect=recording_popen):
            PythonLauncher().open(URL)

        deadline = time.monotonic() + 10
        while spawned[0].returncode is None and time.monotonic() < deadline:
            time.sleep(0.05)
        assert spawned[0].returncode == 0

    def test_missing_command_raises(self) -> None:
        with patch(
            "oidcauth.browser.subprocess.Popen",
            side_effect=FileNotFoundError(2, "No such file or directory", "xdg-open"),
        ):
            with pytest.raises(BrowserLaunchError, match="xdg-open"):
                XdgLauncher().open(URL)
