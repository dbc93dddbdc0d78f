"""Auth service -- the facade the CLI layer talks to.

:class:`AuthService` wires one :class:`~recoder_auth.client.IdentityClient`,
one :class:`~recoder_auth.auth.session_store.SessionStore` and one
:class:`~recoder_auth.auth.token_manager.TokenManager` together with the
three grants and the quota client, and exposes each user-level operation as
a single coroutine.

For most use cases, call :func:`create_auth_service` to get a service built
from the effective settings.

See Also:
    :mod:`recoder_auth.commands.auth` -- the Typer commands built on top.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from recoder_auth.auth.session_store import SessionStore
from recoder_auth.auth.token_manager import TokenManager
from recoder_auth.client import IdentityClient
from recoder_auth.exceptions import (
    InvalidUsageError,
    NotAuthenticatedError,
    RecoderAuthError,
)
from recoder_auth.grants.api_key import APIKeyGrant
from recoder_auth.grants.browser import AuthorizationCodeGrant, generate_state
from recoder_auth.grants.device_code import DeviceAuthorizationGrant, present_device_code
from recoder_auth.models import (
    AuthSettings,
    DeviceCode,
    QuotaCheck,
    QuotaSnapshot,
    Session,
    UserProfile,
)
from recoder_auth.output import suggest
from recoder_auth.quota import QuotaClient

logger = logging.getLogger(__name__)

PROVIDER_KEY_PREFIX = "sk-or-"


class AuthService:
    """Facade over session storage, token lifecycle, grants and quota.

    Use it as an async context manager so the HTTP client is closed::

        async with create_auth_service() as auth:
            if not await auth.is_authenticated():
                await auth.login_with_web()
            quota = await auth.get_quota()
    """

    def __init__(
        self,
        settings: AuthSettings,
        store: SessionStore,
        client: IdentityClient,
        tokens: TokenManager,
        quota: QuotaClient,
        api_key_grant: APIKeyGrant,
        browser_grant: AuthorizationCodeGrant,
        device_grant: DeviceAuthorizationGrant,
    ) -> None:
        self._settings = settings
        self._store = store
        self._client = client
        self._tokens = tokens
        self._quota = quota
        self._api_key_grant = api_key_grant
        self._browser_grant = browser_grant
        self._device_grant = device_grant

    @property
    def settings(self) -> AuthSettings:
        return self._settings

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    async def __aenter__(self) -> AuthService:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Session state
    # ------------------------------------------------------------------ #

    async def is_authenticated(self) -> bool:
        return await self._tokens.is_authenticated()

    def get_session(self) -> Optional[Session]:
        return self._tokens.get_session()

    def get_user(self) -> Optional[UserProfile]:
        """Return the user snapshot stored with the session, if any."""
        session = self._tokens.get_session()
        return session.user if session is not None else None

    async def get_access_token(self) -> Optional[str]:
        return await self._tokens.get_access_token()

    # ------------------------------------------------------------------ #
    # Quota
    # ------------------------------------------------------------------ #

    async def get_quota(self) -> Optional[QuotaSnapshot]:
        return await self._quota.get_quota()

    async def check_quota(self) -> QuotaCheck:
        return await self._quota.check_quota()

    async def require_quota(self) -> QuotaSnapshot:
        return await self._quota.require_quota()

    # ------------------------------------------------------------------ #
    # Login / logout
    # ------------------------------------------------------------------ #

    async def login_with_web(self) -> Session:
        """Log in through the browser and persist the session."""
        session = await self._browser_grant.login()
        self._after_login(session)
        return session

    async def login_with_device_flow(self) -> Session:
        """Log in with a device code approved on another device."""
        session = await self._device_grant.login()
        self._after_login(session)
        return session

    async def login_with_api_key(self, api_key: str) -> Session:
        return await self._api_key_grant.login(api_key)

    async def logout(self) -> None:
        """Revoke the token remotely if possible, then delete the local session.

        Revocation is best-effort: the local session is always removed, even
        when the identity service cannot be reached.
        """
        session = self._store.read()
        if session is not None:
            try:
                await self._client.revoke_token(session.access_token)
            except RecoderAuthError as exc:
                logger.debug("Token revocation failed, continuing logout: %s", exc)
        self._store.delete()

    # ------------------------------------------------------------------ #
    # Provider key
    # ------------------------------------------------------------------ #

    async def set_provider_api_key(self, api_key: str) -> None:
        """Register the user's own OpenRouter key and record that locally.

        Raises:
            NotAuthenticatedError: No usable access token.
            InvalidUsageError: The key does not start with ``sk-or-``.
            InvalidGrantError: The service rejected the key.
            RemoteUnavailableError: On network failures or HTTP 5xx.
        """
        token = await self._tokens.get_access_token()
        if token is None:
            raise NotAuthenticatedError("Not authenticated. Please log in first.")

        api_key = api_key.strip()
        if not api_key.startswith(PROVIDER_KEY_PREFIX):
            raise InvalidUsageError(
                f'Invalid OpenRouter API key format. Must start with "{PROVIDER_KEY_PREFIX}"',
                suggestion="Get a key at https://openrouter.ai/keys",
            )

        await self._client.set_provider_key(token, api_key)
        self._tokens.patch_has_own_provider_key(True)

    def _after_login(self, session: Session) -> None:
        if session.user.needs_provider_key:
            suggest(
                "Free plan users need their own OpenRouter key: "
                "recoder-auth set-api-key <sk-or-...>"
            )


def create_auth_service(
    settings: Optional[AuthSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    store: Optional[SessionStore] = None,
    state_factory: Callable[[], str] = generate_state,
    open_browser: Optional[Callable[[str], bool]] = None,
    presenter: Callable[[DeviceCode, int], None] = present_device_code,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> AuthService:
    """Create an :class:`AuthService` with every component wired together.

    Args:
        settings: Effective settings; loaded via
            :func:`~recoder_auth.config.load_settings` when omitted.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
        store: Session store; defaults to the settings' storage scope.
        state_factory: CSRF state generator for the browser grant.
        open_browser: Browser opener for the browser grant.
        presenter: Displays the device code for the device grant.
        sleep: Poll sleep for the device grant.

    Returns:
        A ready-to-use :class:`AuthService`.
    """
    if settings is None:
        from recoder_auth.config import load_settings

        settings = load_settings()

    store = store if store is not None else SessionStore(settings.storage_scope)
    client = IdentityClient(settings, transport=transport)
    tokens = TokenManager(store, client, skew=settings.refresh_skew)

    browser_kwargs: dict[str, Any] = {"state_factory": state_factory}
    if open_browser is not None:
        browser_kwargs["open_browser"] = open_browser
    device_kwargs: dict[str, Any] = {"presenter": presenter}
    if sleep is not None:
        device_kwargs["sleep"] = sleep

    return AuthService(
        settings=settings,
        store=store,
        client=client,
        tokens=tokens,
        quota=QuotaClient(tokens, client),
        api_key_grant=APIKeyGrant(store, client, settings.api_key_lifetime_days),
        browser_grant=AuthorizationCodeGrant(store, client, settings, **browser_kwargs),
        device_grant=DeviceAuthorizationGrant(store, client, settings, **device_kwargs),
    )
