"""API-key grant.

The raw key is validated by the identity service in one call and then used
directly as the access token. API keys are not refreshed, so the session
carries an empty refresh token and a far-future expiry.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from recoder_auth.auth.session_store import SessionStore
from recoder_auth.client import IdentityClient
from recoder_auth.exceptions import InvalidGrantError, InvalidUsageError
from recoder_auth.grants.base import Grant
from recoder_auth.models import Session


class APIKeyGrant(Grant):
    """Log in with a pre-issued Recoder API key.

    Args:
        store: Where the resulting session is written.
        client: Identity service client.
        lifetime_days: Sentinel lifetime of the stored session.
    """

    def __init__(
        self,
        store: SessionStore,
        client: IdentityClient,
        lifetime_days: int = 365,
    ) -> None:
        super().__init__(store, client)
        self._lifetime = timedelta(days=lifetime_days)

    @property
    def grant_type(self) -> str:
        return "api_key"

    async def login(self, raw_key: str) -> Session:  # type: ignore[override]
        """Validate *raw_key* and persist a session built from it.

        Raises:
            InvalidUsageError: If *raw_key* is empty.
            InvalidGrantError: If the service rejects the key.
            RemoteUnavailableError: On network failures or HTTP 5xx.
        """
        raw_key = raw_key.strip()
        if not raw_key:
            raise InvalidUsageError("API key must not be empty")

        data = await self._client.validate_token(raw_key)
        if not isinstance(data.get("user"), dict):
            raise InvalidGrantError("Invalid API key")

        session = self._build_session(
            access_token=raw_key,
            refresh_token="",
            expires_at=datetime.now(timezone.utc) + self._lifetime,
            user=data["user"],
        )
        return self._persist(session)
