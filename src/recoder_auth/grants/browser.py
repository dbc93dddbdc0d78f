"""Browser authorization code grant.

Flow:
    1. Generate a fresh CSRF ``state`` (``secrets.token_hex(32)``).
    2. Start a :class:`~recoder_auth.auth.callback.CallbackReceiver` on the
       fixed redirect port.
    3. Open the browser at the authorization URL. If no browser can be
       opened, print the URL so the user can open it by hand.
    4. Wait for the redirect (5 minutes by default). The listener is closed
       exactly once whatever the outcome.
    5. Exchange the code for tokens and persist the session.

A failed flow is never retried with the same state; the caller starts a new
:meth:`AuthorizationCodeGrant.login`, which generates a new one.

See Also:
    :mod:`recoder_auth.grants.device_code` for the headless alternative.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import secrets
import webbrowser
from typing import Callable

from recoder_auth.auth.callback import CallbackReceiver
from recoder_auth.auth.session_store import SessionStore
from recoder_auth.client import IdentityClient
from recoder_auth.exceptions import (
    AuthTimeoutError,
    InvalidGrantError,
    RecoderAuthError,
    StateMismatchError,
)
from recoder_auth.grants.base import Grant
from recoder_auth.models import AuthSettings, Session
from recoder_auth.output import info, suggest

logger = logging.getLogger(__name__)


class BrowserFlowState(str, enum.Enum):
    """Progress of one browser login attempt."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    CODE_RECEIVED = "code_received"
    STATE_MISMATCH = "state_mismatch"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    EXCHANGED = "exchanged"
    EXCHANGE_FAILED = "exchange_failed"


def generate_state() -> str:
    """Return 32 random bytes, hex-encoded (64 characters)."""
    return secrets.token_hex(32)


class AuthorizationCodeGrant(Grant):
    """Log in through the user's browser.

    Args:
        store: Where the resulting session is written.
        client: Identity service client.
        settings: Redirect listener address and the browser timeout.
        state_factory: Produces the CSRF state for each attempt.
        open_browser: Opens a URL, returning False when no browser is available.
    """

    def __init__(
        self,
        store: SessionStore,
        client: IdentityClient,
        settings: AuthSettings,
        state_factory: Callable[[], str] = generate_state,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        super().__init__(store, client)
        self._settings = settings
        self._state_factory = state_factory
        self._open_browser = open_browser
        self._flow_state = BrowserFlowState.IDLE

    @property
    def grant_type(self) -> str:
        return "authorization_code"

    @property
    def flow_state(self) -> BrowserFlowState:
        """Where the most recent :meth:`login` attempt ended up."""
        return self._flow_state

    async def login(self) -> Session:  # type: ignore[override]
        """Run the browser flow and persist the resulting session.

        Raises:
            StateMismatchError: The redirect carried a different state.
            InvalidGrantError: The provider or the code exchange refused.
            AuthTimeoutError: No redirect arrived within the browser timeout.
            RemoteUnavailableError: On network failures or HTTP 5xx.
            RecoderAuthError: If the redirect port is already in use.
        """
        self._flow_state = BrowserFlowState.IDLE
        state = self._state_factory()
        receiver = CallbackReceiver(
            self._settings.callback_host,
            self._settings.callback_port,
            self._settings.callback_path,
            expected_state=state,
        )

        try:
            await receiver.start()
        except OSError as exc:
            raise RecoderAuthError(
                f"Cannot listen on port {self._settings.callback_port} for the browser redirect: {exc}",
                suggestion="Free the port or log in without a browser: recoder-auth login --device",
            ) from exc

        try:
            self._flow_state = BrowserFlowState.AWAITING_REDIRECT
            await self._launch(self._client.authorization_url(state))
            code = await receiver.wait(self._settings.browser_timeout)
            self._flow_state = BrowserFlowState.CODE_RECEIVED
        except StateMismatchError:
            self._flow_state = BrowserFlowState.STATE_MISMATCH
            raise
        except AuthTimeoutError:
            self._flow_state = BrowserFlowState.TIMEOUT
            raise
        except InvalidGrantError:
            self._flow_state = BrowserFlowState.REJECTED
            raise
        finally:
            await receiver.close()

        try:
            data = await self._client.exchange_code(code, self._settings.redirect_uri)
            session = self._build_session(
                access_token=data.get("access_token"),
                refresh_token=data.get("refresh_token"),
                expires_at=data.get("expires_at"),
                user=data.get("user"),
            )
        except RecoderAuthError:
            self._flow_state = BrowserFlowState.EXCHANGE_FAILED
            raise

        self._persist(session)
        self._flow_state = BrowserFlowState.EXCHANGED
        return session

    async def _launch(self, url: str) -> None:
        info("Opening browser for authentication...")
        try:
            opened = await asyncio.to_thread(self._open_browser, url)
        except webbrowser.Error as exc:
            logger.debug("Browser launch failed: %s", exc)
            opened = False
        if not opened:
            info("Could not open a browser. Open this URL to continue:")
            info(url)
        else:
            suggest(f"If the browser did not open, visit: {url}")
        info("Waiting for authentication...")
