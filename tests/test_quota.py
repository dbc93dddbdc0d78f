"""Tests for recoder_auth.quota -- degrading and strict quota lookups."""

from __future__ import annotations

import httpx
import pytest

from recoder_auth.auth.token_manager import TokenManager
from recoder_auth.exceptions import (
    NotAuthenticatedError,
    QuotaExceededError,
    RemoteUnavailableError,
)
from recoder_auth.quota import EXCEEDED_REASON, UNAVAILABLE_REASON, QuotaClient


def _quota_handler(remaining: int = 40, limit: int = 100, status: int = 200):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if status != 200:
            return httpx.Response(status, json={"error": "boom"})
        return httpx.Response(
            200,
            json={
                "data": {
                    "requests_remaining": remaining,
                    "requests_limit": limit,
                    "reset_date": "2030-02-01T00:00:00Z",
                }
            },
        )

    handler.seen = seen  # type: ignore[attr-defined]
    return handler


def _quota_client(store, make_client, handler) -> QuotaClient:
    client = make_client(handler)
    return QuotaClient(TokenManager(store, client), client)


class TestGetQuota:
    @pytest.mark.asyncio
    async def test_returns_snapshot(self, store, make_session, make_client) -> None:
        store.write(make_session())
        handler = _quota_handler(remaining=40)
        quota = await _quota_client(store, make_client, handler).get_quota()
        assert quota is not None
        assert quota.requests_remaining == 40
        assert quota.requests_used == 60
        assert handler.seen[0].headers["Authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_none_without_session(self, store, make_client) -> None:
        handler = _quota_handler()
        assert await _quota_client(store, make_client, handler).get_quota() is None
        assert handler.seen == []

    @pytest.mark.asyncio
    async def test_none_on_server_error(self, store, make_session, make_client) -> None:
        store.write(make_session())
        handler = _quota_handler(status=503)
        assert await _quota_client(store, make_client, handler).get_quota() is None

    @pytest.mark.asyncio
    async def test_none_on_rejected_token(self, store, make_session, make_client) -> None:
        store.write(make_session())
        handler = _quota_handler(status=401)
        assert await _quota_client(store, make_client, handler).get_quota() is None

    @pytest.mark.asyncio
    async def test_none_when_expired_api_key_session(
        self, store, make_session, make_client
    ) -> None:
        store.write(make_session(expires_in=-10, refresh_token=""))
        handler = _quota_handler()
        assert await _quota_client(store, make_client, handler).get_quota() is None
        assert handler.seen == []


class TestCheckQuota:
    @pytest.mark.asyncio
    async def test_allowed(self, store, make_session, make_client) -> None:
        store.write(make_session())
        result = await _quota_client(store, make_client, _quota_handler()).check_quota()
        assert result.allowed is True
        assert result.exceeded is False
        assert result.quota is not None

    @pytest.mark.asyncio
    async def test_exceeded(self, store, make_session, make_client) -> None:
        store.write(make_session())
        handler = _quota_handler(remaining=0)
        result = await _quota_client(store, make_client, handler).check_quota()
        assert result.allowed is False
        assert result.exceeded is True
        assert result.reason == EXCEEDED_REASON

    @pytest.mark.asyncio
    async def test_unavailable_is_not_exceeded(self, store, make_session, make_client) -> None:
        store.write(make_session())
        handler = _quota_handler(status=500)
        result = await _quota_client(store, make_client, handler).check_quota()
        assert result.allowed is False
        assert result.exceeded is False
        assert result.reason == UNAVAILABLE_REASON
        assert result.quota is None


class TestRequireQuota:
    @pytest.mark.asyncio
    async def test_returns_snapshot(self, store, make_session, make_client) -> None:
        store.write(make_session())
        quota = await _quota_client(store, make_client, _quota_handler()).require_quota()
        assert quota.requests_limit == 100

    @pytest.mark.asyncio
    async def test_not_authenticated(self, store, make_client) -> None:
        with pytest.raises(NotAuthenticatedError):
            await _quota_client(store, make_client, _quota_handler()).require_quota()

    @pytest.mark.asyncio
    async def test_exceeded_raises(self, store, make_session, make_client) -> None:
        store.write(make_session())
        with pytest.raises(QuotaExceededError) as exc_info:
            await _quota_client(store, make_client, _quota_handler(remaining=0)).require_quota()
        assert exc_info.value.exit_code == 7

    @pytest.mark.asyncio
    async def test_server_error_propagates(self, store, make_session, make_client) -> None:
        store.write(make_session())
        with pytest.raises(RemoteUnavailableError):
            await _quota_client(store, make_client, _quota_handler(status=502)).require_quota()
