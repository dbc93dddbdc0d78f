"""Asynchronous client for the Recoder identity and quota service.

:class:`IdentityClient` wraps :class:`httpx.AsyncClient` and exposes one
coroutine per remote operation (code exchange, key validation, refresh,
revocation, device flow, quota, provider-key registration). Every failure is
mapped onto the :mod:`recoder_auth.exceptions` taxonomy:

* transport errors (DNS, refused connection, timeouts) and HTTP 5xx raise
  :class:`~recoder_auth.exceptions.RemoteUnavailableError`;
* HTTP 4xx raise :class:`~recoder_auth.exceptions.InvalidGrantError` (or the
  error class the caller asks for).

Requests are never retried here: a failed exchange is surfaced and the caller
restarts the grant from the beginning.

Example::

    async with IdentityClient(settings) as client:
        data = await client.validate_token("rk_live_...")
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from recoder_auth.exceptions import (
    InvalidGrantError,
    RecoderAuthError,
    RemoteUnavailableError,
)
from recoder_auth.models import AuthSettings, DeviceCode, QuotaSnapshot

AUTH_PATH = "/api/auth/cli"
DEVICE_AUTHORIZE_PATH = "/api/auth/cli/authorize"
DEVICE_TOKEN_PATH = "/api/auth/cli/token"
QUOTA_PATH = "/api/user/quota"
PROVIDER_KEY_PATH = "/api/user/openrouter"


class IdentityClient:
    """Async HTTP client for the identity service endpoints.

    The underlying :class:`httpx.AsyncClient` is created lazily on the first
    request, so one instance can be shared by the token manager, the grants
    and the quota client. Close it with :meth:`aclose` or use it as an async
    context manager.

    Args:
        settings: Base URL, client id, scope and timeout.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        settings: AuthSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def settings(self) -> AuthSettings:
        return self._settings

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> IdentityClient:
        self._http()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Authorization code grant
    # ------------------------------------------------------------------ #

    def authorization_url(self, state: str) -> str:
        """Build the browser URL for the authorization code grant."""
        params = {
            "response_type": "code",
            "client_id": self._settings.client_id,
            "redirect_uri": self._settings.redirect_uri,
            "state": state,
            "scope": self._settings.scope,
        }
        return f"{self._settings.api_base_url}{AUTH_PATH}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> dict[str, Any]:
        """Exchange an authorization code for ``access_token``, ``refresh_token``,
        ``expires_at`` and ``user``.
        """
        response = await self._send(
            "POST",
            AUTH_PATH,
            json={
                "action": "exchange_code",
                "grant_type": "authorization_code",
                "client_id": self._settings.client_id,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        self._raise_for_status(response, "Failed to exchange authorization code")
        return self._json(response)

    # ------------------------------------------------------------------ #
    # Tokens
    # ------------------------------------------------------------------ #

    async def validate_token(self, token: str) -> dict[str, Any]:
        """Validate a raw API key and return the payload carrying ``user``."""
        response = await self._send(
            "POST", AUTH_PATH, json={"action": "validate_token", "token": token}
        )
        self._raise_for_status(response, "Invalid API key")
        return self._json(response)

    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """Trade a refresh token for ``access_token``, ``expires_at`` and
        optionally a rotated ``refresh_token``.
        """
        response = await self._send(
            "POST",
            AUTH_PATH,
            json={
                "action": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._settings.client_id,
            },
        )
        self._raise_for_status(response, "Failed to refresh token")
        return self._json(response)

    async def revoke_token(self, token: str) -> None:
        """Ask the service to revoke *token*.

        Raises on failure like every other call; callers that treat
        revocation as best-effort catch :class:`RecoderAuthError`.
        """
        response = await self._send(
            "POST", AUTH_PATH, json={"action": "revoke_token", "token": token}
        )
        self._raise_for_status(response, "Failed to revoke token")

    # ------------------------------------------------------------------ #
    # Device authorization grant
    # ------------------------------------------------------------------ #

    async def request_device_code(self, platform: str, hostname: str) -> DeviceCode:
        """Request a device/user code pair for the headless flow."""
        response = await self._send(
            "POST",
            DEVICE_AUTHORIZE_PATH,
            json={
                "client_id": self._settings.client_id,
                "scope": self._settings.scope,
                "deviceInfo": {"platform": platform, "hostname": hostname},
            },
        )
        self._raise_for_status(response, "Failed to request device code")
        try:
            return DeviceCode.model_validate(self._json(response))
        except ValidationError as exc:
            raise RemoteUnavailableError(
                f"Device code response is malformed: {exc.error_count()} invalid field(s)"
            ) from exc

    async def poll_device_token(self, device_code: str) -> tuple[int, dict[str, Any]]:
        """Poll the device token endpoint once.

        Pending and denied answers commonly arrive with 4xx status codes, so
        they are returned rather than raised; only transport failures and
        5xx answers raise.

        Returns:
            ``(status_code, body)`` where *body* is the decoded JSON object
            (empty when the body is not a JSON object).
        """
        response = await self._send(
            "GET",
            DEVICE_TOKEN_PATH,
            headers={
                "X-Device-Code": device_code,
                "X-Client-Id": self._settings.client_id,
            },
        )
        if response.status_code >= 500:
            raise RemoteUnavailableError(
                f"Device authorization poll failed: HTTP {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        return response.status_code, body if isinstance(body, dict) else {}

    # ------------------------------------------------------------------ #
    # Account
    # ------------------------------------------------------------------ #

    async def get_quota(self, access_token: str) -> QuotaSnapshot:
        """Fetch the current quota for the bearer of *access_token*."""
        response = await self._send(
            "GET", QUOTA_PATH, headers=_bearer(access_token)
        )
        self._raise_for_status(response, "Failed to fetch quota")
        data = self._json(response).get("data")
        try:
            return QuotaSnapshot.model_validate(data)
        except ValidationError as exc:
            raise RemoteUnavailableError("Quota response is malformed") from exc

    async def set_provider_key(self, access_token: str, api_key: str) -> None:
        """Register the user's own OpenRouter key with the service."""
        response = await self._send(
            "PUT",
            PROVIDER_KEY_PATH,
            headers=_bearer(access_token),
            json={"openRouterApiKey": api_key},
        )
        self._raise_for_status(response, "Failed to save API key")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.api_base_url,
                timeout=self._settings.request_timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Send one request, mapping transport failures to RemoteUnavailableError."""
        try:
            return await self._http().request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(
                f"Cannot reach {self._settings.api_base_url}: {exc}"
            ) from exc

    @staticmethod
    def _raise_for_status(
        response: httpx.Response,
        message: str,
        error_cls: type[RecoderAuthError] = InvalidGrantError,
    ) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        # Try to extract an error message from the response body.
        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("error") or detail.get("message") or ""
            else:
                msg = str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        full_msg = f"{message} (HTTP {status}: {msg})" if msg else f"{message} (HTTP {status})"
        if status >= 500:
            raise RemoteUnavailableError(full_msg)
        raise error_cls(full_msg)

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteUnavailableError("Identity service returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise RemoteUnavailableError("Identity service returned an unexpected payload")
        return data


def _bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}
