"""Token lifecycle manager -- keeps an access token valid for every caller.

:class:`TokenManager` wraps a :class:`~recoder_auth.auth.session_store.SessionStore`
and answers the one question downstream code asks: "give me a token I can
use right now". Tokens that expire within the skew window are refreshed
first, and refreshes are single-flight: concurrent callers share one
in-flight refresh instead of racing each other on the same refresh token.

Failures never escape the accessors. :meth:`TokenManager.get_access_token`
returns ``None`` and :meth:`TokenManager.is_authenticated` returns ``False``,
and the stored session is left untouched so a transient network error does
not force a new login.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timezone
from typing import Optional

from recoder_auth.auth.session_store import SessionStore
from recoder_auth.client import IdentityClient
from recoder_auth.exceptions import (
    NotAuthenticatedError,
    RecoderAuthError,
    RefreshUnavailableError,
    RemoteUnavailableError,
)
from recoder_auth.models import Session

logger = logging.getLogger(__name__)


class TokenManager:
    """Decide when to refresh, serialise refreshes, and hand out valid tokens.

    Only :meth:`refresh` and :meth:`patch_has_own_provider_key` rewrite an
    existing session; both read the current record and write back a complete
    new one.

    Args:
        store: The session store for the active scope.
        client: Identity service client used for refresh calls.
        skew: Seconds before expiry at which a token is proactively refreshed.
    """

    def __init__(
        self,
        store: SessionStore,
        client: IdentityClient,
        skew: float = 300.0,
    ) -> None:
        self._store = store
        self._client = client
        self._skew = skew
        self._inflight: Optional[asyncio.Task[Session]] = None

    @property
    def store(self) -> SessionStore:
        return self._store

    def get_session(self) -> Optional[Session]:
        return self._store.read()

    async def is_authenticated(self) -> bool:
        """Return True iff a session exists and is unexpired or refreshable."""
        session = self._store.read()
        if session is None:
            return False
        if not session.is_expired():
            return True
        try:
            await self.refresh()
        except RecoderAuthError as exc:
            logger.debug("Session expired and refresh failed: %s", exc)
            return False
        return True

    async def get_access_token(self) -> Optional[str]:
        """Return a token valid for at least the skew window, or ``None``."""
        session = self._store.read()
        if session is None:
            return None
        if not session.expires_within(self._skew):
            return session.access_token
        try:
            refreshed = await self.refresh()
        except RecoderAuthError as exc:
            logger.debug("Access token unavailable: %s", exc)
            return None
        return refreshed.access_token

    async def refresh(self) -> Session:
        """Refresh the stored session, joining an in-flight refresh if any.

        Returns:
            The refreshed and persisted session.

        Raises:
            NotAuthenticatedError: If there is no stored session.
            RefreshUnavailableError: If the session has no refresh token.
            InvalidGrantError: If the service rejects the refresh token.
            RemoteUnavailableError: On network failures or HTTP 5xx.
            RecoderAuthError: If the refreshed session cannot be written.
        """
        if self._inflight is None:
            task = asyncio.ensure_future(self._do_refresh())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        # Shield so that one cancelled caller does not cancel everyone's refresh.
        return await asyncio.shield(self._inflight)

    def patch_has_own_provider_key(self, value: bool) -> bool:
        """Rewrite ``user.has_own_api_key``, keeping every other field.

        Returns:
            ``False`` when there is no session to patch.
        """
        session = self._store.read()
        if session is None:
            return False
        user = session.user.model_copy(update={"has_own_api_key": value})
        self._store.write(session.model_copy(update={"user": user}))
        return True

    def _clear_inflight(self, task: asyncio.Task[Session]) -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the exception as retrieved when every waiter was cancelled.
        if not task.cancelled():
            task.exception()

    async def _do_refresh(self) -> Session:
        session = self._store.read()
        if session is None:
            raise NotAuthenticatedError("Not authenticated. Please log in first.")
        if not session.refresh_token:
            raise RefreshUnavailableError("No refresh token available")

        logger.debug("Refreshing access token for user %s", session.user_id)
        data = await self._client.refresh_token(session.refresh_token)

        access_token = data.get("access_token")
        expires_at = data.get("expires_at")
        if not access_token or not expires_at:
            raise RemoteUnavailableError(
                "Refresh response is missing 'access_token' or 'expires_at'"
            )

        try:
            refreshed = Session(
                user_id=session.user_id,
                access_token=access_token,
                refresh_token=data.get("refresh_token") or session.refresh_token,
                expires_at=expires_at,
                user=session.user,
            )
        except ValueError as exc:
            raise RemoteUnavailableError(f"Refresh response is malformed: {exc}") from exc

        if refreshed.expires_at < session.expires_at:
            refreshed = refreshed.model_copy(update={"expires_at": session.expires_at})

        try:
            self._store.write(refreshed)
        except OSError as exc:
            raise RecoderAuthError(
                f"Cannot save the refreshed session to {self._store.path}: {exc}"
            ) from exc
        logger.debug(
            "Access token refreshed, valid until %s",
            refreshed.expires_at.astimezone(timezone.utc).isoformat(),
        )
        return refreshed
