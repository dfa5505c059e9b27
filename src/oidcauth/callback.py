"""One-shot loopback HTTP server for the authorization callback.

Every login attempt creates its own :class:`CallbackServer`. Binding
happens in the constructor (port ``0`` lets the OS choose), so the redirect
URI is known before the browser is opened. Connections are served on their
own threads; the first HTTP request that is actually read, whatever it looks
like, is recorded and ends serving:

- ``GET <callback_path>?code=...&state=...`` -- parameters are captured
  into a :class:`~oidcauth.models.CallbackResult`.
- ``GET`` on any other path -- answered with 404 and an empty result, which
  the login flow rejects because the state does not match.
- Anything unparseable -- ``CallbackResult(error="invalid_request")``.

A connection that never sends a request line (browsers open idle
pre-connections to localhost) is not a request: it times out on its own
thread without using up the listener.

Routing state lives on the server instance, so concurrent sessions and
repeated logins never share a handler.
"""

from __future__ import annotations

import html
import logging
import socketserver
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from oidcauth.exceptions import CallbackTimeoutError, ListenerBindError, LoginCancelledError
from oidcauth.models import CallbackResult

logger = logging.getLogger(__name__)

_PAGE = "<html><head><title>{title}</title></head><body><h2>{message}</h2></body></html>"


class _OneShotHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server that keeps the first request it reads."""

    daemon_threads = True
    block_on_close = False

    def __init__(self, server_address: tuple[str, int], callback_path: str) -> None:
        self.callback_path = callback_path
        self.result: Optional[CallbackResult] = None
        self.done = threading.Event()
        self._claim_lock = threading.Lock()
        super().__init__(server_address, _CallbackHandler)

    def server_bind(self) -> None:
        # Skip HTTPServer's reverse DNS lookup of the bind address.
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = port

    def claim(self, result: CallbackResult) -> bool:
        """Record *result* unless a request was already recorded."""
        with self._claim_lock:
            if self.done.is_set():
                return False
            self.result = result
            self.done.set()
            return True


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _OneShotHTTPServer
    # Socket timeout for a connection that never sends its request line.
    timeout = 10

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            logger.warning("Ignoring request for unexpected path %s", parsed.path)
            self.server.claim(CallbackResult())
            self._respond(404, "Not found", "Unknown login callback path.")
            return

        params = parse_qs(parsed.query)
        result = CallbackResult(
            code=_first(params, "code"),
            state=_first(params, "state"),
            error=_first(params, "error"),
            error_description=_first(params, "error_description"),
        )
        if not self.server.claim(result):
            self._respond(409, "Login failed", "A login callback was already received.")
            return

        if result.error:
            message = f"Login failed: {result.error}"
            if result.error_description:
                message += f" - {result.error_description}"
            self._respond(200, "Login failed", message)
        elif result.code:
            self._respond(
                200,
                "Login complete",
                "Authorization received. You can close this window "
                "and return to the application.",
            )
        else:
            self._respond(400, "Login failed", "No authorization code received.")

    def send_error(
        self, code: int, message: Optional[str] = None, explain: Optional[str] = None
    ) -> None:
        # Reached for request lines that cannot be parsed and unsupported methods.
        self.server.claim(
            CallbackResult(
                error="invalid_request",
                error_description=message or "Malformed callback request",
            )
        )
        super().send_error(code, message, explain)

    def _respond(self, status: int, title: str, message: str) -> None:
        body = _PAGE.format(title=html.escape(title), message=html.escape(message))
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body.encode("utf-8"))

    def log_message(self, format: str, *args: Any) -> None:
        # The default writes every request line to stderr.
        logger.debug("Callback server: " + format, *args)


def _first(params: dict[str, list[str]], name: str) -> Optional[str]:
    values = params.get(name)
    return values[0] if values else None


class CallbackServer:
    """Loopback listener that serves a single authorization callback.

    Serving starts in the constructor on a background thread, so a redirect
    that arrives before :meth:`wait` is called is still captured.

    Args:
        host: Interface to bind; loopback only.
        port: Port to bind; ``0`` asks the OS for an ephemeral port.
        callback_path: The only path treated as the callback.

    Raises:
        ListenerBindError: If the socket cannot be bound.

    Example::

        with CallbackServer() as server:
            open_browser(build_url(server.redirect_uri))
            result = server.wait(timeout=300)
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        callback_path: str = "/callback",
    ) -> None:
        try:
            self._server = _OneShotHTTPServer((host, port), callback_path)
        except OSError as exc:
            raise ListenerBindError(f"Unable to start localhost listener: {exc}") from exc
        self._callback_path = callback_path
        self._closed = False
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.05},
            name=f"oidcauth-callback-{self.port}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Callback listener bound on port %d", self.port)

    def __enter__(self) -> CallbackServer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def port(self) -> int:
        """The TCP port the listener is bound to."""
        return self._server.server_address[1]

    @property
    def redirect_uri(self) -> str:
        """The redirect URI to register with the authorization request."""
        return f"http://localhost:{self.port}{self._callback_path}"

    @property
    def closed(self) -> bool:
        return self._closed

    def wait(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.2,
    ) -> CallbackResult:
        """Wait for exactly one request and return what it carried.

        The listener is closed before this method returns, whatever the
        outcome.

        Args:
            timeout: Seconds to wait for the request; ``None`` waits forever.
            cancel_event: When set by another thread, waiting stops.
            poll_interval: How often *timeout* and *cancel_event* are checked.

        Returns:
            The captured :class:`~oidcauth.models.CallbackResult`.

        Raises:
            CallbackTimeoutError: If no request arrived in time.
            LoginCancelledError: If *cancel_event* was set first.
        """
        if self._closed:
            raise RuntimeError("CallbackServer has already been used")

        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise LoginCancelledError("Login cancelled while waiting for the callback")
                slice_ = poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise CallbackTimeoutError(
                            f"No login callback received within {timeout:g} seconds"
                        )
                    slice_ = min(slice_, remaining)
                if self._server.done.wait(slice_):
                    break
        finally:
            self.close()

        result = self._server.result
        if result is None:
            return CallbackResult(
                error="invalid_request", error_description="Malformed callback request"
            )
        return result

    def close(self) -> None:
        """Stop listening. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._server.shutdown()
            self._server.server_close()
            logger.debug("Callback listener on port %d closed", self.port)
