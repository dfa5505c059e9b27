"""Browser-based authorization-code login with single-flight serialisation.

:class:`LoginFlow` runs one login attempt at a time::

    Idle -> ListenerBound -> BrowserOpened -> AwaitingCallback
         -> Exchanging -> Complete | Failed

1. Acquire the flow's lock. A concurrent caller waits its turn; it is never
   rejected.
2. Bind a fresh :class:`~oidcauth.callback.CallbackServer` and derive the
   redirect URI from its port.
3. Generate a single-use ``state`` (and a PKCE pair) for this attempt.
4. Open the authorization URL with the :class:`~oidcauth.browser.BrowserLauncher`.
5. Wait for the one callback request.
6. Reject a missing or mismatched ``state`` without exchanging anything.
7. Exchange the code for a :class:`~oidcauth.models.Token`.

The listener is closed and the lock released whatever the outcome.
"""

from __future__ import annotations

import enum
import logging
import secrets
import sys
import threading
from typing import Optional

from oidcauth.browser import BrowserLauncher
from oidcauth.callback import CallbackServer
from oidcauth.exceptions import (
    AuthorizationDeniedError,
    LoginCancelledError,
    StateMismatchError,
)
from oidcauth.models import SessionConfig, Token
from oidcauth.oauth2 import OAuth2Client, generate_pkce_pair

logger = logging.getLogger(__name__)


class LoginState(str, enum.Enum):
    """Stages of a single login attempt."""

    IDLE = "idle"
    LISTENER_BOUND = "listener_bound"
    BROWSER_OPENED = "browser_opened"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"


def generate_state() -> str:
    """Return a fresh, unguessable state token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)


class LoginFlow:
    """Runs browser logins for one client, one attempt at a time.

    Args:
        oauth2_client: Builds the authorization URL and exchanges codes.
        launcher: Opens the authorization URL for the user.
        config: Timeouts, callback path, and PKCE settings.
    """

    def __init__(
        self,
        oauth2_client: OAuth2Client,
        launcher: BrowserLauncher,
        config: SessionConfig,
    ) -> None:
        self._oauth2_client = oauth2_client
        self._launcher = launcher
        self._config = config
        self._lock = threading.Lock()
        self._redirect_uri: Optional[str] = None
        self._state = LoginState.IDLE

    @property
    def redirect_uri(self) -> Optional[str]:
        """Redirect URI of the current or most recent attempt."""
        return self._redirect_uri

    @property
    def state(self) -> LoginState:
        """Stage of the current or most recent attempt."""
        return self._state

    def run(
        self,
        cancel_event: Optional[threading.Event] = None,
        callback_timeout: Optional[float] = None,
        exchange_timeout: Optional[float] = None,
    ) -> Token:
        """Run one complete browser login and return the issued token.

        Args:
            cancel_event: Set from another thread to abandon the attempt, or
                to stop waiting for the lock.
            callback_timeout: Seconds to wait for the browser redirect;
                defaults to ``config.callback_timeout``.
            exchange_timeout: Seconds to wait for the token endpoint;
                defaults to ``config.exchange_timeout``.

        Returns:
            The :class:`~oidcauth.models.Token` issued for the callback's code.

        Raises:
            LoginCancelledError: If *cancel_event* was set.
            ListenerBindError: If no loopback port could be bound.
            BrowserLaunchError: If the browser could not be opened.
            CallbackTimeoutError: If the redirect never arrived.
            StateMismatchError: If the callback's state is wrong or missing.
            AuthorizationDeniedError: If the issuer returned an error.
            TokenExchangeError: If the code exchange failed.
        """
        self._acquire(cancel_event)
        try:
            token = self._attempt(
                cancel_event,
                self._config.callback_timeout if callback_timeout is None else callback_timeout,
                self._config.exchange_timeout if exchange_timeout is None else exchange_timeout,
            )
        except BaseException:
            self._transition(LoginState.FAILED)
            raise
        finally:
            self._lock.release()
        logger.info("Browser login complete for client '%s'", self._oauth2_client.client_id)
        return token

    def _acquire(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is None:
            self._lock.acquire()
            return
        while not self._lock.acquire(timeout=0.1):
            if cancel_event.is_set():
                raise LoginCancelledError("Login cancelled while waiting for another login")
        if cancel_event.is_set():
            self._lock.release()
            raise LoginCancelledError("Login cancelled before it started")

    def _attempt(
        self,
        cancel_event: Optional[threading.Event],
        callback_timeout: float,
        exchange_timeout: float,
    ) -> Token:
        self._transition(LoginState.IDLE)
        with CallbackServer(callback_path=self._config.callback_path) as server:
            redirect_uri = server.redirect_uri
            self._redirect_uri = redirect_uri
            self._transition(LoginState.LISTENER_BOUND)

            state = generate_state()
            code_verifier: Optional[str] = None
            code_challenge: Optional[str] = None
            if self._config.use_pkce:
                code_verifier, code_challenge = generate_pkce_pair()

            auth_url = self._oauth2_client.authorization_url(
                state, redirect_uri, code_challenge
            )
            self._launcher.open(auth_url)
            self._transition(LoginState.BROWSER_OPENED)
            if self._config.announce_url:
                sys.stderr.write(
                    "Opening your browser to log in. If it does not open, visit:\n"
                    f"{auth_url}\n"
                )
                sys.stderr.flush()

            self._transition(LoginState.AWAITING_CALLBACK)
            result = server.wait(timeout=callback_timeout, cancel_event=cancel_event)

        if result.state is None or not secrets.compare_digest(
            result.state.encode("utf-8"), state.encode("utf-8")
        ):
            raise StateMismatchError("Login callback state does not match")
        if result.error:
            message = f"Authorization failed: {result.error}"
            if result.error_description:
                message += f" - {result.error_description}"
            raise AuthorizationDeniedError(message, result.error, result.error_description)
        if not result.code:
            raise AuthorizationDeniedError("No authorization code received from callback")
        if cancel_event is not None and cancel_event.is_set():
            raise LoginCancelledError("Login cancelled before the code exchange")

        self._transition(LoginState.EXCHANGING)
        token = self._oauth2_client.exchange(
            result.code,
            redirect_uri,
            code_verifier=code_verifier,
            timeout=exchange_timeout,
        )
        self._transition(LoginState.COMPLETE)
        return token

    def _transition(self, state: LoginState) -> None:
        self._state = state
        logger.debug("Login attempt: %s", state.value)
