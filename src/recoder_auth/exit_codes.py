"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~recoder_auth.exceptions.RecoderAuthError` subclass.
Shell wrappers can inspect the exit code to decide whether to re-run a
login, wait for the service, or give up, without parsing stderr.

Example::

    $ recoder-auth status
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no usable session, run `recoder-auth login`
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments (e.g. a malformed key)."""

EXIT_AUTH_FAILURE = 3
"""No usable session, or a grant was rejected by the identity service."""

EXIT_REMOTE_UNAVAILABLE = 5
"""The identity service could not be reached or answered with HTTP 5xx."""

EXIT_TIMEOUT = 6
"""An interactive grant exceeded its authorization window."""

EXIT_QUOTA_EXCEEDED = 7
"""The account has no requests remaining in the current quota period."""
