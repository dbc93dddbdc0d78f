"""End-to-end tests for the recoder-auth CLI commands.

Each test runs the Typer app through ``CliRunner`` with an isolated config
directory and a mock identity service injected into
:func:`recoder_auth.service.create_auth_service`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import httpx
import pytest
from rich.logging import RichHandler

from recoder_auth import __version__
from recoder_auth import service as service_module
from recoder_auth.app import app
from recoder_auth.auth.session_store import SessionStore
from recoder_auth.models import StorageScope


def _routes(user: dict[str, Any], remaining: int = 80, limit: int = 100):
    """Build a handler answering the identity endpoints the commands use."""
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        route = body.get("action") or request.url.path
        calls.append(route)
        if route == "validate_token":
            if body["token"] == "rk_bad":
                return httpx.Response(401, json={"error": "Invalid token"})
            return httpx.Response(200, json={"user": user})
        if route == "revoke_token":
            return httpx.Response(200, json={"success": True})
        if route == "/api/user/quota":
            return httpx.Response(
                200,
                json={
                    "data": {
                        "requests_remaining": remaining,
                        "requests_limit": limit,
                        "reset_date": "2030-01-01T00:00:00Z",
                    }
                },
            )
        if route == "/api/user/openrouter":
            return httpx.Response(200, json={"success": True})
        if route == "/api/auth/cli/authorize":
            return httpx.Response(
                200,
                json={
                    "device_code": "dev-1",
                    "user_code": "WXYZ-1234",
                    "verification_uri": "https://recoder.test/device",
                    "interval": 1,
                },
            )
        if route == "/api/auth/cli/token":
            return httpx.Response(
                200,
                json={
                    "token": {
                        "accessToken": "dev-access",
                        "refreshToken": "dev-refresh",
                        "expiresAt": "2031-01-01T00:00:00Z",
                    },
                    "user": user,
                },
            )
        return httpx.Response(404, json={"error": "not found"})

    handler.calls = calls  # type: ignore[attr-defined]
    return handler


@pytest.fixture
def use_service(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """Route every command through a mock transport."""

    def _install(handler: Callable[[httpx.Request], httpx.Response]) -> None:
        real = service_module.create_auth_service

        async def no_sleep(_: float) -> None:
            return None

        def factory(settings=None):
            return real(
                settings=settings,
                transport=httpx.MockTransport(handler),
                sleep=no_sleep,
            )

        monkeypatch.setattr("recoder_auth.commands.auth.create_auth_service", factory)

    return _install


@pytest.fixture
def global_store(isolated_config) -> SessionStore:
    return SessionStore(StorageScope.GLOBAL)


class TestVersion:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"recoder-auth {__version__}" in result.output


class TestVerbose:
    def test_verbose_enables_debug_logging(
        self, cli_runner, global_store, use_service, user_payload
    ) -> None:
        use_service(_routes(user_payload))
        logger = logging.getLogger("recoder_auth")

        cli_runner.invoke(app, ["--verbose", "status"])
        assert logger.level == logging.DEBUG
        assert any(isinstance(h, RichHandler) for h in logger.handlers)

        cli_runner.invoke(app, ["status"])
        assert logger.level == logging.WARNING
        assert not any(isinstance(h, RichHandler) for h in logger.handlers)


class TestLogin:
    def test_api_key(self, cli_runner, global_store, use_service, user_payload) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["login", "--api-key", "rk_live_1"])
        assert result.exit_code == 0, result.output
        assert "Logged in as ada@example.com" in result.output
        session = global_store.read()
        assert session.access_token == "rk_live_1"
        assert session.refresh_token == ""

    def test_api_key_from_env(
        self, cli_runner, global_store, use_service, user_payload, monkeypatch
    ) -> None:
        use_service(_routes(user_payload))
        monkeypatch.setenv("RECODER_API_KEY", "rk_env")
        result = cli_runner.invoke(app, ["login"])
        assert result.exit_code == 0, result.output
        assert global_store.read().access_token == "rk_env"

    def test_rejected_api_key(self, cli_runner, global_store, use_service, user_payload) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["login", "--api-key", "rk_bad"])
        assert result.exit_code == 3
        assert "Invalid API key" in result.output
        assert global_store.read() is None

    def test_device_flow(self, cli_runner, global_store, use_service, user_payload) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["login", "--device"])
        assert result.exit_code == 0, result.output
        assert "WXYZ-1234" in result.output
        assert "https://recoder.test/device" in result.output
        assert "set-api-key" in result.output
        assert global_store.read().refresh_token == "dev-refresh"

    def test_device_and_api_key_conflict(
        self, cli_runner, global_store, use_service, user_payload
    ) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["login", "--device", "--api-key", "rk_1"])
        assert result.exit_code == 2
        assert "not both" in result.output

    def test_already_logged_in(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        handler = _routes(user_payload)
        use_service(handler)
        result = cli_runner.invoke(app, ["login", "--api-key", "rk_other"])
        assert result.exit_code == 0
        assert "Already logged in as ada@example.com" in result.output
        assert handler.calls == []
        assert global_store.read().access_token == "access-1"

    def test_force_replaces_session(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["login", "--force", "--api-key", "rk_other"])
        assert result.exit_code == 0, result.output
        assert global_store.read().access_token == "rk_other"

    def test_project_scope(
        self, cli_runner, isolated_config, use_service, user_payload
    ) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["--project", "login", "--api-key", "rk_proj"])
        assert result.exit_code == 0, result.output
        assert (isolated_config / ".recoder" / "auth.json").is_file()
        assert SessionStore(StorageScope.GLOBAL).read() is None


class TestLogout:
    def test_logout(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        handler = _routes(user_payload)
        use_service(handler)
        result = cli_runner.invoke(app, ["logout"])
        assert result.exit_code == 0
        assert "Logged out." in result.output
        assert handler.calls == ["revoke_token"]
        assert not global_store.exists()


class TestStatus:
    def test_not_authenticated(self, cli_runner, global_store, use_service, user_payload) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["status"])
        assert result.exit_code == 3
        assert "Not authenticated." in result.output

    def test_authenticated_plain(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload, remaining=42))
        result = cli_runner.invoke(app, ["--plain", "status"])
        assert result.exit_code == 0, result.output
        assert "email\tada@example.com" in result.output
        assert "plan\tfree" in result.output
        assert "requests_remaining\t42" in result.output
        assert "set-api-key" in result.output


class TestWhoami:
    def test_json(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["--json", "whoami"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {
            "id": "user_123",
            "email": "ada@example.com",
            "name": "Ada Lovelace",
            "plan": "free",
        }

    def test_not_authenticated(self, cli_runner, global_store, use_service, user_payload) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["whoami"])
        assert result.exit_code == 3


class TestQuota:
    def test_table(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload, remaining=30, limit=100))
        result = cli_runner.invoke(app, ["--plain", "quota"])
        assert result.exit_code == 0, result.output
        assert "Used\tLimit\tRemaining\tUsage\tResets" in result.output
        assert "70\t100\t30\t70.0%\t2030-01-01T00:00:00Z" in result.output
        assert "Warning" not in result.output

    def test_high_usage_warning(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload, remaining=5, limit=100))
        result = cli_runner.invoke(app, ["--no-color", "quota"])
        assert result.exit_code == 0, result.output
        assert "You have used 95% of your quota." in result.output

    def test_exceeded_warning(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload, remaining=0, limit=100))
        result = cli_runner.invoke(app, ["--no-color", "quota"])
        assert result.exit_code == 0, result.output
        assert "Quota exceeded." in result.output


class TestSetApiKey:
    def test_saves_key(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["set-api-key", "sk-or-v1-abc"])
        assert result.exit_code == 0, result.output
        assert "OpenRouter API key saved." in result.output
        assert global_store.read().user.has_own_api_key is True

    def test_bad_prefix(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["set-api-key", "sk-ant-abc"])
        assert result.exit_code == 2
        assert "sk-or-" in result.output

    def test_paid_plan_needs_no_key(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session(subscription_plan="pro"))
        handler = _routes(user_payload)
        use_service(handler)
        result = cli_runner.invoke(app, ["set-api-key", "sk-or-v1-abc"])
        assert result.exit_code == 0
        assert "no OpenRouter key is needed" in result.output
        assert handler.calls == []


class TestToken:
    def test_prints_token(
        self, cli_runner, global_store, use_service, user_payload, make_session
    ) -> None:
        global_store.write(make_session())
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["token"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "access-1"

    def test_not_authenticated(self, cli_runner, global_store, use_service, user_payload) -> None:
        use_service(_routes(user_payload))
        result = cli_runner.invoke(app, ["token"])
        assert result.exit_code == 3
        assert "No valid access token." in result.output
