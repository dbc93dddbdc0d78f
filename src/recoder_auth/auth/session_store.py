"""Persistent session store, one file per storage scope.

Stores the :class:`~recoder_auth.models.Session` in
``~/.config/recoder/auth.json`` (user-global, XDG) or
``./.recoder/auth.json`` (project-local). Files are written atomically via
:func:`~recoder_auth.config.atomic_write` with ``0o600`` permissions so that
tokens are never readable by other users, even momentarily.

A missing, unreadable or malformed file reads as "no session"; callers treat
that exactly like never having logged in.

Platform caveat: on POSIX a session file whose mode grants any access to group
or others is refused on read. Windows has no such mode bits, so the check is
skipped there.

See Also:
    :class:`~recoder_auth.auth.token_manager.TokenManager` -- the only
    component that rewrites an existing session.
"""

from __future__ import annotations

import json
import logging
import os
import stat
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from recoder_auth.config import atomic_write, session_path
from recoder_auth.models import Session, StorageScope

logger = logging.getLogger(__name__)

_FILE_MODE = 0o600


def _has_posix_modes() -> bool:
    return os.name == "posix"


class SessionStore:
    """Read/write/delete the session for a single storage scope.

    Args:
        scope: Which session file to manage.
        path: Explicit file path, overriding the scope's default location.

    Example::

        store = SessionStore(StorageScope.GLOBAL)
        store.write(session)
        assert store.read() == session
    """

    def __init__(
        self,
        scope: StorageScope = StorageScope.GLOBAL,
        path: Optional[Path] = None,
    ) -> None:
        self._scope = scope
        self._path = path if path is not None else session_path(scope)

    @property
    def path(self) -> Path:
        """The filesystem path to this scope's session file."""
        return self._path

    @property
    def scope(self) -> StorageScope:
        return self._scope

    def read(self) -> Optional[Session]:
        """Load the stored session from disk.

        Returns:
            The deserialised :class:`~recoder_auth.models.Session`, or
            ``None`` if the file does not exist, cannot be parsed, or is
            accessible to other users.
        """
        try:
            if not self._path.is_file():
                return None
            if _has_posix_modes() and not self._is_private():
                logger.warning(
                    "Ignoring session file %s: it is accessible to other users", self._path
                )
                return None
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return Session.model_validate(data)
        except (json.JSONDecodeError, ValidationError, ValueError, OSError) as exc:
            logger.debug("Unreadable session file %s: %s", self._path, exc)
            return None

    def write(self, session: Session) -> None:
        """Replace the stored session atomically with ``0o600`` permissions.

        Missing parent directories are created.

        Raises:
            OSError: If the file cannot be written (permissions, disk full, etc.).
        """
        text = session.model_dump_json(indent=2) + "\n"
        atomic_write(self._path, text, mode=_FILE_MODE)
        logger.debug("Session for user %s written to %s", session.user_id, self._path)

    def delete(self) -> None:
        """Delete the stored session file. No-op when it does not exist."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Session file %s deleted", self._path)

    def exists(self) -> bool:
        return self._path.is_file()

    def _is_private(self) -> bool:
        mode = stat.S_IMODE(self._path.stat().st_mode)
        return mode & (stat.S_IRWXG | stat.S_IRWXO) == 0
