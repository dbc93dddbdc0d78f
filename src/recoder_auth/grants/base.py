"""Abstract base class for grants.

A grant is one way of obtaining credentials from the identity service.
Subclasses implement :meth:`Grant.login`, which runs the interaction and
returns the :class:`~recoder_auth.models.Session` it persisted. Building and
saving the session goes through :meth:`Grant._build_session` and
:meth:`Grant._persist` so all grants produce the same shape.

Grants never modify an existing session; they only replace it with a
complete new one.

See Also:
    :mod:`recoder_auth.service` for how grants are wired together.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from recoder_auth.auth.session_store import SessionStore
from recoder_auth.client import IdentityClient
from recoder_auth.exceptions import RemoteUnavailableError
from recoder_auth.models import Session

logger = logging.getLogger(__name__)


class Grant(ABC):
    """Shared plumbing for the API-key, browser and device grants.

    Args:
        store: Where the resulting session is written.
        client: Identity service client.
    """

    def __init__(self, store: SessionStore, client: IdentityClient) -> None:
        self._store = store
        self._client = client

    @property
    @abstractmethod
    def grant_type(self) -> str:
        """Return a short identifier such as ``"api_key"`` or ``"device_code"``."""
        ...

    @abstractmethod
    async def login(self, *args: Any, **kwargs: Any) -> Session:
        """Run the grant and return the persisted session.

        Raises:
            InvalidGrantError: If the service rejects the credential.
            RemoteUnavailableError: On network failures or HTTP 5xx.
        """
        ...

    def _build_session(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str],
        expires_at: Optional[datetime | str],
        user: Any,
    ) -> Session:
        """Assemble a session from a grant response.

        Raises:
            RemoteUnavailableError: If the response lacks a token, an expiry
                or a well-formed user record.
        """
        if not access_token or not expires_at or not isinstance(user, dict):
            raise RemoteUnavailableError(
                f"Identity service returned an incomplete {self.grant_type} response"
            )
        try:
            return Session.from_grant(access_token, refresh_token, expires_at, user)
        except ValidationError as exc:
            raise RemoteUnavailableError(
                f"Identity service returned a malformed {self.grant_type} response: "
                f"{exc.error_count()} invalid field(s)"
            ) from exc

    def _persist(self, session: Session) -> Session:
        self._store.write(session)
        logger.debug("Stored %s session for user %s", self.grant_type, session.user_id)
        return session
