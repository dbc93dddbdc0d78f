"""Auth commands -- log in, inspect and end the Recoder session.

Each command builds an :class:`~recoder_auth.service.AuthService` from the
settings resolved in :func:`~recoder_auth.app.main_callback`, runs one
coroutine on it, and maps :class:`~recoder_auth.exceptions.RecoderAuthError`
to an error message, a suggestion and the error's exit code.

Typical workflow::

    recoder-auth login              # browser login
    recoder-auth login --device     # headless login
    recoder-auth status             # who am I, how much quota is left
    recoder-auth token              # print a valid token for scripts
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from recoder_auth.exceptions import (
    InvalidUsageError,
    NotAuthenticatedError,
    RecoderAuthError,
    RemoteUnavailableError,
)
from recoder_auth.exit_codes import EXIT_AUTH_FAILURE
from recoder_auth.models import AuthSettings, SubscriptionPlan, UserProfile
from recoder_auth.output import (
    error,
    info,
    print_data,
    print_record,
    print_table,
    success,
    suggest,
    warning,
)
from recoder_auth.service import AuthService, create_auth_service

T = TypeVar("T")

QUOTA_WARNING_PERCENT = 90.0


def _settings(ctx: typer.Context) -> Optional[AuthSettings]:
    obj = ctx.find_root().obj
    return obj.get("settings") if isinstance(obj, dict) else None


def _run(ctx: typer.Context, action: Callable[[AuthService], Awaitable[T]]) -> T:
    """Run *action* against a fresh service, turning auth errors into exits."""

    async def _main() -> T:
        async with create_auth_service(settings=_settings(ctx)) as auth:
            return await action(auth)

    try:
        return asyncio.run(_main())
    except RecoderAuthError as exc:
        error(str(exc))
        if exc.suggestion:
            suggest(exc.suggestion)
        raise typer.Exit(code=exc.exit_code) from None


def _require_user(auth: AuthService) -> UserProfile:
    user = auth.get_user()
    if user is None:
        raise NotAuthenticatedError("Not authenticated. Please log in first.")
    return user


def login_command(
    ctx: typer.Context,
    device: bool = typer.Option(
        False, "--device", help="Use the device flow (no local browser needed)."
    ),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", help="Log in with a Recoder API key.", envvar="RECODER_API_KEY"
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Log in again even if already authenticated."
    ),
) -> None:
    """Log in to Recoder.

    Opens the browser by default. ``--device`` prints a code to approve on
    another device; ``--api-key`` validates a pre-issued key instead.

    Example::

        recoder-auth login
        recoder-auth login --device
        recoder-auth login --api-key rk_live_...
    """

    async def _login(auth: AuthService) -> None:
        if device and api_key:
            raise InvalidUsageError("Use either --device or --api-key, not both")

        if not force and await auth.is_authenticated():
            user = auth.get_user()
            label = (user.email or user.name or user.id) if user else "unknown user"
            info(f"Already logged in as {label}.")
            suggest("Log in again with: recoder-auth login --force")
            return

        if api_key:
            session = await auth.login_with_api_key(api_key)
        elif device:
            session = await auth.login_with_device_flow()
        else:
            session = await auth.login_with_web()

        user = session.user
        success(f"Logged in as {user.email or user.name or user.id}")
        info(f"Plan: {user.subscription_plan.value}")

    _run(ctx, _login)


def logout_command(ctx: typer.Context) -> None:
    """Log out and delete the local session.

    The session file is removed even if the server cannot be reached.
    """

    async def _logout(auth: AuthService) -> None:
        await auth.logout()

    _run(ctx, _logout)
    success("Logged out.")


def status_command(ctx: typer.Context) -> None:
    """Show whether you are logged in, your plan, and remaining quota.

    Exits with code 3 when not authenticated.
    """

    async def _status(auth: AuthService) -> Optional[dict[str, Any]]:
        if not await auth.is_authenticated():
            return None
        user = _require_user(auth)
        quota = await auth.get_quota()
        record: dict[str, Any] = {
            "authenticated": True,
            "email": user.email,
            "name": user.name,
            "plan": user.subscription_plan.value,
            "own_provider_key": user.has_own_api_key,
            "storage": auth.settings.storage_scope.value,
        }
        if quota is not None:
            record["requests_remaining"] = quota.requests_remaining
            record["requests_limit"] = quota.requests_limit
            record["reset_date"] = quota.reset_date
        return record

    record = _run(ctx, _status)
    if record is None:
        error("Not authenticated.")
        suggest("Log in: recoder-auth login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    print_record(record, title="Recoder session")
    if record["plan"] == SubscriptionPlan.FREE.value and not record["own_provider_key"]:
        suggest("Set your OpenRouter key: recoder-auth set-api-key <sk-or-...>")


def whoami_command(ctx: typer.Context) -> None:
    """Print the logged-in user (``--json`` aware)."""

    async def _whoami(auth: AuthService) -> dict[str, Any]:
        if not await auth.is_authenticated():
            raise NotAuthenticatedError("Not authenticated.")
        user = _require_user(auth)
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "plan": user.subscription_plan.value,
        }

    print_record(_run(ctx, _whoami))


def quota_command(ctx: typer.Context) -> None:
    """Show request quota and usage."""

    async def _quota(auth: AuthService) -> Any:
        if not await auth.is_authenticated():
            raise NotAuthenticatedError("Not authenticated.")
        quota = await auth.get_quota()
        if quota is None:
            raise RemoteUnavailableError("Unable to fetch quota information")
        return quota

    quota = _run(ctx, _quota)
    print_table(
        ["Used", "Limit", "Remaining", "Usage", "Resets"],
        [
            [
                str(quota.requests_used),
                str(quota.requests_limit),
                str(quota.requests_remaining),
                f"{quota.percent_used:.1f}%",
                quota.reset_date or "-",
            ]
        ],
        title="Recoder quota",
    )
    if quota.requests_remaining <= 0:
        warning("Quota exceeded.")
        suggest("Upgrade your plan at https://recoder.xyz/pricing or wait for the reset")
    elif quota.percent_used > QUOTA_WARNING_PERCENT:
        warning(f"You have used {quota.percent_used:.0f}% of your quota.")


def set_api_key_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Your OpenRouter API key (starts with sk-or-)."),
) -> None:
    """Register your own OpenRouter key (free plan only).

    Example::

        recoder-auth set-api-key sk-or-v1-...
    """

    async def _set(auth: AuthService) -> Optional[str]:
        user = _require_user(auth)
        if user.subscription_plan != SubscriptionPlan.FREE:
            return user.subscription_plan.value
        await auth.set_provider_api_key(key)
        return None

    plan = _run(ctx, _set)
    if plan is not None:
        info(f"Your {plan} plan includes API access; no OpenRouter key is needed.")
        return
    success("OpenRouter API key saved.")


def token_command(ctx: typer.Context) -> None:
    """Print a currently valid access token to stdout.

    Example::

        curl -H "Authorization: Bearer $(recoder-auth token)" ...
    """

    async def _token(auth: AuthService) -> str:
        token = await auth.get_access_token()
        if token is None:
            raise NotAuthenticatedError("No valid access token.")
        return token

    print_data(_run(ctx, _token))
