"""Canonical Pydantic models shared across all recoder_auth modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Persisted session** -- serialised as JSON by
:class:`~recoder_auth.auth.session_store.SessionStore`:
    :class:`SubscriptionPlan`, :class:`QuotaSnapshot`, :class:`UserProfile`,
    and :class:`Session`. Field names are the on-disk contract and match the
    identity service's snake_case payloads.

**Wire records** -- parsed from identity-service responses:
    :class:`DeviceCode`.

**Configuration and results** -- :class:`StorageScope`, :class:`AuthSettings`,
:class:`QuotaCheck`.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Session ---


class SubscriptionPlan(str, enum.Enum):
    """Billing plan reported by the identity service."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class QuotaSnapshot(BaseModel):
    """Last known request quota.

    The copy embedded in a :class:`Session` may be stale; the authoritative
    source is :class:`~recoder_auth.quota.QuotaClient`.
    """

    model_config = ConfigDict(extra="ignore")

    requests_remaining: int = 0
    requests_limit: int = 0
    reset_date: Optional[str] = Field(
        default=None, description="ISO-8601 instant at which the quota resets"
    )

    @property
    def requests_used(self) -> int:
        return max(self.requests_limit - self.requests_remaining, 0)

    @property
    def percent_used(self) -> float:
        """Share of the limit already consumed, ``0.0`` when there is no limit."""
        if self.requests_limit <= 0:
            return 0.0
        return self.requests_used / self.requests_limit * 100


class UserProfile(BaseModel):
    """The account a session belongs to.

    Example::

        UserProfile(id="u_1", email="ada@example.com", name="Ada",
                    subscription_plan="free")
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""
    name: str = ""
    subscription_plan: SubscriptionPlan = SubscriptionPlan.FREE
    has_own_api_key: bool = Field(
        default=False,
        description="Whether the user registered their own provider key",
    )
    quota: QuotaSnapshot = Field(default_factory=QuotaSnapshot)

    @property
    def needs_provider_key(self) -> bool:
        """Free-plan users must bring their own provider key."""
        return self.subscription_plan == SubscriptionPlan.FREE and not self.has_own_api_key


class Session(BaseModel):
    """The persisted bundle of tokens, expiry, and user snapshot.

    Exactly one session exists per storage scope. ``refresh_token`` is empty
    for sessions created from an API key, which are never refreshed.
    """

    model_config = ConfigDict(extra="ignore")

    user_id: str
    access_token: str
    refresh_token: str = ""
    expires_at: datetime
    user: UserProfile

    @field_validator("expires_at")
    @classmethod
    def _expires_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @classmethod
    def from_grant(
        cls,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime | str,
        user: UserProfile | dict,
    ) -> Session:
        """Build a session from the pieces every grant produces.

        ``user_id`` is always derived from ``user.id`` so all three grants
        yield the same shape.
        """
        profile = user if isinstance(user, UserProfile) else UserProfile.model_validate(user)
        return cls(
            user_id=profile.id,
            access_token=access_token,
            refresh_token=refresh_token or "",
            expires_at=expires_at,  # type: ignore[arg-type]
            user=profile,
        )

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """Return True if the access token expires within *seconds* of *now*."""
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds() <= seconds

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_within(0, now)


# --- Wire records ---


class DeviceCode(BaseModel):
    """Device/user code pair returned by the device authorization endpoint."""

    model_config = ConfigDict(extra="ignore")

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: Optional[str] = None
    interval: Optional[int] = Field(
        default=None, description="Server-advertised poll interval in seconds"
    )


# --- Configuration ---


class StorageScope(str, enum.Enum):
    """Where the session file lives."""

    GLOBAL = "global"
    PROJECT = "project"


class AuthSettings(BaseModel):
    """Explicit configuration passed to every component at construction.

    Loaded by :func:`recoder_auth.config.load_settings`, which layers the
    user and project settings files and ``RECODER_*`` environment variables
    over these defaults.
    """

    model_config = ConfigDict(extra="ignore")

    api_base_url: str = Field(
        default="https://recoder.xyz", description="Identity service base URL"
    )
    client_id: str = "recoder-code"
    scope: str = "cli:full profile"
    callback_host: str = "localhost"
    callback_port: int = Field(default=8080, description="Fixed redirect listener port")
    callback_path: str = "/auth/callback"
    request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    browser_timeout: float = Field(
        default=300.0, description="Seconds to wait for the browser redirect"
    )
    device_max_attempts: int = Field(
        default=180, description="Poll attempts before a device grant expires"
    )
    device_default_interval: int = Field(
        default=5, description="Poll interval when the server advertises none"
    )
    refresh_skew: float = Field(
        default=300.0, description="Refresh tokens expiring within this many seconds"
    )
    api_key_lifetime_days: int = 365
    storage_scope: StorageScope = StorageScope.GLOBAL

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.callback_host}:{self.callback_port}{self.callback_path}"


# --- Results ---


class QuotaCheck(BaseModel):
    """Outcome of a quota check.

    ``allowed`` is False both when the quota could not be fetched and when
    it is exhausted; ``exceeded`` distinguishes the business-rule case.
    """

    allowed: bool
    exceeded: bool = False
    reason: Optional[str] = None
    quota: Optional[QuotaSnapshot] = None
