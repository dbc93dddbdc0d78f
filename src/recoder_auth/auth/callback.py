"""One-shot redirect receiver for the browser authorization code grant.

:class:`CallbackReceiver` is a local HTTP listener that answers exactly one
authorization callback and then stops. It exposes a single future-like
outcome: :meth:`CallbackReceiver.wait` either returns the authorization code
or raises. Whatever happens first (a valid callback, a state mismatch, a
provider error, or the deadline) resolves the outcome. Later callbacks are
answered with a page but cannot change it, and :meth:`CallbackReceiver.close`
tears the socket down exactly once no matter how often it is called.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import parse_qs, urlparse

from recoder_auth.exceptions import (
    AuthTimeoutError,
    InvalidGrantError,
    StateMismatchError,
)

logger = logging.getLogger(__name__)

# Seconds allowed for a connected client to send its request head.
_REQUEST_READ_TIMEOUT = 10.0

_PAGE = """\
<!DOCTYPE html>
<html>
<head><title>{title}</title></head>
<body style="font-family: system-ui, sans-serif; text-align: center; padding: 50px;">
  <h1>{title}</h1>
  <p>{message}</p>
</body>
</html>
"""

SUCCESS_PAGE = _PAGE.format(
    title="Authentication Successful",
    message="You can close this window and return to your terminal.",
)
STATE_MISMATCH_PAGE = _PAGE.format(
    title="Authentication Failed",
    message="Invalid state parameter. Please start the login again from your terminal.",
)
ERROR_PAGE = _PAGE.format(
    title="Authentication Failed",
    message="No authorization code was received. Please try again from your terminal.",
)
ALREADY_HANDLED_PAGE = _PAGE.format(
    title="Request Already Handled",
    message="This login attempt has already completed. You can close this window.",
)

_REASONS = {200: "OK", 400: "Bad Request", 404: "Not Found"}


class CallbackReceiver:
    """Transient listener for a single redirect on *path*.

    Args:
        host: Interface to bind (``localhost`` for the redirect URI).
        port: Fixed local port registered as the redirect URI.
        path: Callback path, e.g. ``/auth/callback``.
        expected_state: The CSRF state sent with the authorization request.

    Example::

        receiver = CallbackReceiver("localhost", 8080, "/auth/callback", state)
        await receiver.start()
        try:
            code = await receiver.wait(timeout=300)
        finally:
            await receiver.close()
    """

    def __init__(self, host: str, port: int, path: str, expected_state: str) -> None:
        self._host = host
        self._port = port
        self._path = path
        self._expected_state = expected_state
        self._server: Optional[asyncio.Server] = None
        self._outcome: Optional[asyncio.Future[str]] = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._closed = False

    @property
    def port(self) -> int:
        """The bound port (resolved after :meth:`start` when 0 was requested)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Bind the listening socket.

        Raises:
            OSError: If the port is already in use.
        """
        loop = asyncio.get_running_loop()
        self._outcome = loop.create_future()
        self._server = await asyncio.start_server(self._handle, self._host, self._port)
        logger.debug("Callback listener bound on %s:%s%s", self._host, self.port, self._path)

    async def wait(self, timeout: float) -> str:
        """Wait for the callback outcome.

        Returns:
            The authorization code.

        Raises:
            StateMismatchError: The callback carried a different state.
            InvalidGrantError: The provider returned an error or no code.
            AuthTimeoutError: No callback arrived within *timeout* seconds.
        """
        assert self._outcome is not None, "start() must be awaited first"
        try:
            return await asyncio.wait_for(asyncio.shield(self._outcome), timeout)
        except asyncio.TimeoutError:
            self._settle(exc=AuthTimeoutError("Authentication timeout: no browser callback received"))
            raise AuthTimeoutError(
                f"Authentication timeout: no browser callback within {int(timeout)}s"
            ) from None

    async def close(self) -> None:
        """Stop listening and drop open connections. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._settle(exc=AuthTimeoutError("Callback listener closed"))
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        logger.debug("Callback listener on port %s closed", self._port)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _settle(self, code: Optional[str] = None, exc: Optional[BaseException] = None) -> bool:
        """Resolve the outcome once; return False if it was already resolved."""
        if self._outcome is None or self._outcome.done():
            return False
        if exc is not None:
            self._outcome.set_exception(exc)
            # The outcome may never be awaited (e.g. closed before wait()).
            self._outcome.exception()
        else:
            self._outcome.set_result(code or "")
        return True

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            target = await asyncio.wait_for(_read_request_target(reader), _REQUEST_READ_TIMEOUT)
            if target is None:
                return
            status, body, code, failure = self._dispatch(target)
            try:
                await _respond(writer, status, body)
            finally:
                # Resolve only after the page is written so close() cannot cut it off.
                if code is not None or failure is not None:
                    self._settle(code=code, exc=failure)
        except (asyncio.TimeoutError, ConnectionError, ValueError) as exc:
            logger.debug("Dropped callback connection: %s", exc)
        finally:
            self._writers.discard(writer)
            writer.close()

    def _dispatch(
        self, target: str
    ) -> tuple[int, str, Optional[str], Optional[BaseException]]:
        """Map a request target to ``(status, body, code, error)``.

        At most one of *code* and *error* is set; both are ``None`` for
        requests that must not resolve the outcome.
        """
        parsed = urlparse(target)
        if parsed.path != self._path:
            return 404, "Not Found", None, None

        if self._outcome is None or self._outcome.done():
            return 200, ALREADY_HANDLED_PAGE, None, None

        params = parse_qs(parsed.query)
        state = params.get("state", [None])[0]
        code = params.get("code", [None])[0]
        error = params.get("error", [None])[0]

        if state != self._expected_state:
            logger.warning("State parameter mismatch on authorization callback")
            return 400, STATE_MISMATCH_PAGE, None, StateMismatchError("Invalid state parameter")

        if error:
            description = params.get("error_description", [""])[0]
            message = f"Authorization failed: {error}"
            if description:
                message += f" - {description}"
            return 400, ERROR_PAGE, None, InvalidGrantError(message)

        if not code:
            return 400, ERROR_PAGE, None, InvalidGrantError("No authorization code received")

        return 200, SUCCESS_PAGE, code, None


async def _read_request_target(reader: asyncio.StreamReader) -> Optional[str]:
    """Read an HTTP/1.x request head and return its target, or None if empty."""
    request_line = await reader.readline()
    if not request_line:
        return None
    parts = request_line.decode("latin-1").strip().split(" ")
    # Drain headers up to the blank line.
    while True:
        line = await reader.readline()
        if line in (b"\r\n", b"\n", b""):
            break
    if len(parts) < 2:
        return None
    return parts[1]


async def _respond(writer: asyncio.StreamWriter, status: int, body: str) -> None:
    payload = body.encode("utf-8")
    content_type = "text/html; charset=utf-8" if body.startswith("<!DOCTYPE") else "text/plain"
    head = (
        f"HTTP/1.1 {status} {_REASONS.get(status, '')}\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    writer.write(head.encode("latin-1") + payload)
    await writer.drain()
