"""Open URLs in the user's default browser.

Each platform gets its own :class:`BrowserLauncher` variant, and
:func:`default_launcher` picks one once, based on :func:`platform.system`:

==========  ==========================
Platform    Command
==========  ==========================
Darwin      ``open <url>``
Windows     ``cmd /c start "" <url>``
other       ``xdg-open <url>``
==========  ==========================

The command is started, not waited on; a launcher only fails when the
command itself cannot be spawned. Tests substitute any object with an
``open(url)`` method.
"""

from __future__ import annotations

import logging
import platform
import subprocess
import threading
from typing import Optional, Protocol

from oidcauth.exceptions import BrowserLaunchError

logger = logging.getLogger(__name__)


class BrowserLauncher(Protocol):
    """Opens a URL for the user, raising :class:`BrowserLaunchError` on failure."""

    def open(self, url: str) -> None: ...


class CommandLauncher:
    """Launch the browser by spawning a platform command with the URL appended."""

    command: tuple[str, ...] = ()

    def argv(self, url: str) -> list[str]:
        """Return the full argument vector used to open *url*."""
        return [*self.command, url]

    def open(self, url: str) -> None:
        """Spawn the launch command without waiting for it.

        The child is reaped on a daemon thread once it exits.

        Raises:
            BrowserLaunchError: If the command cannot be started.
        """
        argv = self.argv(url)
        logger.debug("Opening browser with %s", argv[0])
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise BrowserLaunchError(f"Failed to open browser with '{argv[0]}': {exc}") from exc
        threading.Thread(
            target=process.wait, name=f"oidcauth-browser-{process.pid}", daemon=True
        ).start()


class DarwinLauncher(CommandLauncher):
    command = ("open",)


class WindowsLauncher(CommandLauncher):
    # The empty string is the window title; without it, start treats a
    # quoted URL as the title.
    command = ("cmd", "/c", "start", "")

    def argv(self, url: str) -> list[str]:
        # cmd.exe treats & as a command separator.
        return [*self.command, url.replace("&", "^&")]


class XdgLauncher(CommandLauncher):
    command = ("xdg-open",)


def default_launcher(system: Optional[str] = None) -> BrowserLauncher:
    """Return the launcher for *system* (defaults to the running platform)."""
    system = system or platform.system()
    if system == "Darwin":
        return DarwinLauncher()
    if system == "Windows":
        return WindowsLauncher()
    return XdgLauncher()
