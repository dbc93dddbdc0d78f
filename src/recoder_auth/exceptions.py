"""Exception hierarchy for recoder_auth.

All exceptions inherit from :class:`RecoderAuthError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`recoder_auth.exit_codes` and a ``suggestion`` naming the command that
fixes the problem. The top-level handler in :func:`recoder_auth.app.main`
prints both and exits with the code.

Subclass hierarchy::

    RecoderAuthError (exit 1)
    +-- ConfigError               (exit 1)
    +-- InvalidUsageError         (exit 2)
    +-- NotAuthenticatedError     (exit 3)
    +-- InvalidGrantError         (exit 3)
    |   +-- StateMismatchError
    |   +-- AuthorizationDeniedError
    +-- RefreshUnavailableError   (exit 3)
    +-- RemoteUnavailableError    (exit 5)
    +-- AuthTimeoutError          (exit 6)
    +-- QuotaExceededError        (exit 7)
"""

from recoder_auth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_QUOTA_EXCEEDED,
    EXIT_REMOTE_UNAVAILABLE,
    EXIT_TIMEOUT,
)

LOGIN_HINT = "Log in again: recoder-auth login"


class RecoderAuthError(Exception):
    """Base exception for all recoder_auth errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
        suggestion: Optional override for the class-level remediation hint.
    """

    exit_code: int = EXIT_GENERIC_FAILURE
    suggestion: str | None = None

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        suggestion: str | None = None,
    ):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code
        if suggestion is not None:
            self.suggestion = suggestion


class ConfigError(RecoderAuthError):
    """Raised for unreadable or invalid settings files."""

    exit_code = EXIT_GENERIC_FAILURE


class InvalidUsageError(RecoderAuthError):
    """Raised for invalid command input, such as a provider key with the wrong prefix."""

    exit_code = EXIT_INVALID_USAGE


class NotAuthenticatedError(RecoderAuthError):
    """Raised when an operation needs a session and none is usable."""

    exit_code = EXIT_AUTH_FAILURE
    suggestion = LOGIN_HINT


class InvalidGrantError(RecoderAuthError):
    """Raised when the identity service rejects a code, key, or refresh token."""

    exit_code = EXIT_AUTH_FAILURE
    suggestion = LOGIN_HINT


class StateMismatchError(InvalidGrantError):
    """Raised when the browser callback carries a different CSRF state.

    The flow must be restarted with a freshly generated state; the old one
    is never reused.
    """

    suggestion = "Restart the browser login: recoder-auth login --force"


class AuthorizationDeniedError(InvalidGrantError):
    """Raised when the user denies a device authorization request."""

    suggestion = "Approve the request in your browser: recoder-auth login --device"


class RefreshUnavailableError(RecoderAuthError):
    """Raised when the session has no refresh token (e.g. API-key sessions)."""

    exit_code = EXIT_AUTH_FAILURE
    suggestion = "Log in again or set a new key: recoder-auth login --api-key <key>"


class RemoteUnavailableError(RecoderAuthError):
    """Raised on network failures and HTTP 5xx answers from the identity service."""

    exit_code = EXIT_REMOTE_UNAVAILABLE
    suggestion = "Check your connection and retry; RECODER_API_URL overrides the service URL"


class AuthTimeoutError(RecoderAuthError):
    """Raised when a browser or device grant exceeds its authorization window."""

    exit_code = EXIT_TIMEOUT
    suggestion = "Start the login again: recoder-auth login"


class QuotaExceededError(RecoderAuthError):
    """Raised when the account has no requests remaining (a business rule, not a fetch error)."""

    exit_code = EXIT_QUOTA_EXCEEDED
    suggestion = "Upgrade your plan at https://recoder.xyz/pricing or wait for the quota reset"
