"""Device authorization grant for headless terminals.

For SSH sessions, containers and CI runners where no browser can be opened
locally. The user is shown a URL and a short code to enter on another
device while this process polls for the result.

Flow:
    1. Request a device/user code pair for this machine.
    2. Hand the :class:`~recoder_auth.models.DeviceCode` to the presenter
       (by default printed to stderr).
    3. Poll the token endpoint at the advertised interval until the user
       approves, denies, or :attr:`AuthSettings.device_max_attempts` polls
       have been made.
    4. On approval, persist the session.

Nothing is written until the flow succeeds, so cancelling the coroutine
(Ctrl-C) at any point leaves the stored session untouched.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import socket
import sys
from typing import Any, Awaitable, Callable, Optional

from recoder_auth.auth.session_store import SessionStore
from recoder_auth.client import IdentityClient
from recoder_auth.exceptions import (
    AuthorizationDeniedError,
    AuthTimeoutError,
    InvalidGrantError,
)
from recoder_auth.grants.base import Grant
from recoder_auth.models import AuthSettings, DeviceCode, Session
from recoder_auth.output import info

logger = logging.getLogger(__name__)

_PENDING = frozenset({"authorization_pending", "pending"})
_DENIED = frozenset({"denied", "access_denied"})
_SLOW_DOWN_STEP = 5


class DeviceFlowState(str, enum.Enum):
    """Progress of one device login attempt."""

    IDLE = "idle"
    CODE_REQUESTED = "code_requested"
    POLLING = "polling"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"


def present_device_code(device: DeviceCode, window_minutes: int) -> None:
    """Print the verification instructions to stderr."""
    info("")
    info("To sign in, use a web browser to open the page:")
    info(f"  {device.verification_uri}")
    info(f"and enter the code: {device.user_code}")
    if device.verification_uri_complete:
        info("")
        info(f"Or open this link directly: {device.verification_uri_complete}")
    info("")
    info(f"The code is valid for {window_minutes} minutes. Waiting for authorization...")


class DeviceAuthorizationGrant(Grant):
    """Log in by approving a device code on another device.

    Args:
        store: Where the resulting session is written.
        client: Identity service client.
        settings: Poll cap and fallback interval.
        presenter: Called once with the device code and the authorization
            window in minutes.
        sleep: Awaitable sleep used between polls.
    """

    def __init__(
        self,
        store: SessionStore,
        client: IdentityClient,
        settings: AuthSettings,
        presenter: Callable[[DeviceCode, int], None] = present_device_code,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(store, client)
        self._settings = settings
        self._presenter = presenter
        self._sleep = sleep
        self._flow_state = DeviceFlowState.IDLE
        self._attempts = 0

    @property
    def grant_type(self) -> str:
        return "device_code"

    @property
    def flow_state(self) -> DeviceFlowState:
        return self._flow_state

    @property
    def attempts(self) -> int:
        """Number of polls made by the most recent :meth:`login`."""
        return self._attempts

    async def login(self) -> Session:  # type: ignore[override]
        """Run the device flow and persist the resulting session.

        Raises:
            AuthorizationDeniedError: The user denied the request.
            InvalidGrantError: The service answered with an unknown error.
            AuthTimeoutError: The poll cap was reached without approval.
            RemoteUnavailableError: On network failures or HTTP 5xx.
        """
        self._flow_state = DeviceFlowState.IDLE
        self._attempts = 0

        device = await self._client.request_device_code(
            sys.platform, socket.gethostname()
        )
        self._flow_state = DeviceFlowState.CODE_REQUESTED

        interval = device.interval or self._settings.device_default_interval
        max_attempts = self._settings.device_max_attempts
        window_minutes = max(1, (max_attempts * interval) // 60)
        self._presenter(device, window_minutes)

        self._flow_state = DeviceFlowState.POLLING
        while self._attempts < max_attempts:
            await self._sleep(interval)
            self._attempts += 1

            status_code, body = await self._client.poll_device_token(device.device_code)
            outcome = _classify(status_code, body)

            if outcome == "approved":
                token = body["token"]
                session = self._build_session(
                    access_token=token.get("accessToken"),
                    refresh_token=token.get("refreshToken"),
                    expires_at=token.get("expiresAt"),
                    user=body.get("user"),
                )
                self._persist(session)
                self._flow_state = DeviceFlowState.APPROVED
                return session
            if outcome == "pending":
                continue
            if outcome == "slow_down":
                interval += _SLOW_DOWN_STEP
                logger.debug("Device poll asked to slow down; interval now %ss", interval)
                continue
            if outcome == "denied":
                self._flow_state = DeviceFlowState.DENIED
                raise AuthorizationDeniedError("Authorization denied by user")

            self._flow_state = DeviceFlowState.FAILED
            raise InvalidGrantError(f"Device authorization failed: {_describe(body, status_code)}")

        self._flow_state = DeviceFlowState.EXPIRED
        raise AuthTimeoutError(
            f"Device code expired after {max_attempts} polling attempts. Please try again."
        )


def _classify(status_code: int, body: dict[str, Any]) -> str:
    """Reduce one poll response to approved/pending/slow_down/denied/error."""
    token = body.get("token")
    if status_code < 300 and isinstance(token, dict) and token.get("accessToken"):
        return "approved"
    error = body.get("error")
    status = body.get("status")
    if error in _PENDING or status in _PENDING:
        return "pending"
    if error == "slow_down":
        return "slow_down"
    if error in _DENIED or status in _DENIED:
        return "denied"
    return "error"


def _describe(body: dict[str, Any], status_code: int) -> str:
    detail: Optional[str] = body.get("error_description") or body.get("error") or body.get("message")
    return str(detail) if detail else f"HTTP {status_code}"
