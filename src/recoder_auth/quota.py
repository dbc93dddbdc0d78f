"""Quota lookups for the authenticated account.

:class:`QuotaClient` is the canonical downstream consumer of
:class:`~recoder_auth.auth.token_manager.TokenManager`: it asks for a valid
token, calls the quota endpoint, and degrades every fetch failure to
``None``. Running out of requests is a separate business-rule outcome,
reported by :meth:`QuotaClient.check_quota` and raised by
:meth:`QuotaClient.require_quota`.
"""

from __future__ import annotations

import logging
from typing import Optional

from recoder_auth.auth.token_manager import TokenManager
from recoder_auth.client import IdentityClient
from recoder_auth.exceptions import (
    NotAuthenticatedError,
    QuotaExceededError,
    RecoderAuthError,
)
from recoder_auth.models import QuotaCheck, QuotaSnapshot

logger = logging.getLogger(__name__)

UNAVAILABLE_REASON = "Unable to fetch quota information"
EXCEEDED_REASON = "Quota exceeded. Upgrade your plan or wait for the quota reset."


class QuotaClient:
    """Fetch and evaluate the request quota.

    Args:
        token_manager: Supplies a valid access token per call.
        client: Identity service client.
    """

    def __init__(self, token_manager: TokenManager, client: IdentityClient) -> None:
        self._tokens = token_manager
        self._client = client

    async def get_quota(self) -> Optional[QuotaSnapshot]:
        """Return the current quota, or ``None`` if it cannot be fetched."""
        token = await self._tokens.get_access_token()
        if token is None:
            return None
        try:
            return await self._client.get_quota(token)
        except RecoderAuthError as exc:
            logger.debug("Quota fetch failed: %s", exc)
            return None

    async def check_quota(self) -> QuotaCheck:
        """Report whether another request is allowed.

        ``allowed`` is False both when the quota cannot be fetched and when
        no requests remain; only the latter sets ``exceeded``.
        """
        quota = await self.get_quota()
        if quota is None:
            return QuotaCheck(allowed=False, reason=UNAVAILABLE_REASON)
        if quota.requests_remaining <= 0:
            return QuotaCheck(allowed=False, exceeded=True, reason=EXCEEDED_REASON, quota=quota)
        return QuotaCheck(allowed=True, quota=quota)

    async def require_quota(self) -> QuotaSnapshot:
        """Return the quota, raising instead of degrading.

        Unlike :meth:`get_quota`, fetch failures propagate so callers can
        tell "not logged in" from "service down" from "out of requests".

        Raises:
            NotAuthenticatedError: No usable access token.
            RemoteUnavailableError: On network failures or HTTP 5xx.
            QuotaExceededError: No requests remain.
        """
        token = await self._tokens.get_access_token()
        if token is None:
            raise NotAuthenticatedError("Not authenticated. Please log in first.")
        quota = await self._client.get_quota(token)
        if quota.requests_remaining <= 0:
            raise QuotaExceededError(EXCEEDED_REASON)
        return quota
