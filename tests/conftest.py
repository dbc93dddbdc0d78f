"""Shared test fixtures for recoder_auth.

Provides isolated config environments, output state management, sample
sessions, mock identity-service clients and a CLI runner. These fixtures
are discovered by pytest automatically.
"""

from __future__ import annotations

import socket
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from recoder_auth.auth.session_store import SessionStore
from recoder_auth.client import IdentityClient
from recoder_auth.models import AuthSettings, Session, StorageScope, UserProfile
from recoder_auth.output import OutputFormat, OutputManager, reset_output, set_output


API_BASE = "https://recoder.test"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches sys.stdout/sys.stderr at creation time; once
    CliRunner restores the real streams those references go stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CONFIG_HOME and XDG_DATA_HOME below tmp_path, clears the
    RECODER_* variables, and changes the working directory to tmp_path.
    Non-XDG platforms fall back to ``~/.recoder``, so HOME is moved too.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))

    for var in [
        "RECODER_API_URL",
        "RECODER_CLIENT_ID",
        "RECODER_AUTH_SCOPE",
        "RECODER_API_KEY",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Settings, sessions and stores
# ---------------------------------------------------------------------------


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port() -> int:
    """An unused local TCP port for the redirect listener."""
    return _free_port()


@pytest.fixture
def settings(free_port: int) -> AuthSettings:
    """Settings pointing at a fake service with short flow timeouts."""
    return AuthSettings(
        api_base_url=API_BASE,
        callback_host="127.0.0.1",
        callback_port=free_port,
        browser_timeout=5.0,
        request_timeout=5.0,
    )


@pytest.fixture
def user_payload() -> dict[str, Any]:
    """A user record as the identity service returns it."""
    return {
        "id": "user_123",
        "email": "ada@example.com",
        "name": "Ada Lovelace",
        "subscription_plan": "free",
        "has_own_api_key": False,
        "quota": {
            "requests_remaining": 80,
            "requests_limit": 100,
            "reset_date": "2030-01-01T00:00:00Z",
        },
    }


@pytest.fixture
def make_session(user_payload: dict[str, Any]) -> Callable[..., Session]:
    """Factory for sessions expiring *expires_in* seconds from now."""

    def _make(
        expires_in: float = 3600,
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
        **user_overrides: Any,
    ) -> Session:
        user = UserProfile.model_validate({**user_payload, **user_overrides})
        return Session(
            user_id=user.id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            user=user,
        )

    return _make


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    """A session store writing to a disposable file."""
    return SessionStore(StorageScope.GLOBAL, path=tmp_path / "session" / "auth.json")


# ---------------------------------------------------------------------------
# Identity client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_client(settings: AuthSettings) -> Callable[..., IdentityClient]:
    """Factory for an IdentityClient backed by ``httpx.MockTransport``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> IdentityClient:
        return IdentityClient(settings, transport=httpx.MockTransport(handler))

    return _make


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
