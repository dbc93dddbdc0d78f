"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for recoder_auth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.recoder/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Settings** -- :func:`load_settings` merges CLI overrides, ``RECODER_*``
  environment variables, the project settings file
  (``./.recoder/config.json``), the user settings file
  (``<config_dir>/config.json``), and defaults into one
  :class:`~recoder_auth.models.AuthSettings`.
* **Session paths** -- :func:`session_path` maps a
  :class:`~recoder_auth.models.StorageScope` to the session file location.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from recoder_auth.exceptions import ConfigError
from recoder_auth.models import AuthSettings, StorageScope

_APP_NAME = "recoder"
_CONFIG_FILENAME = "config.json"
_SESSION_FILENAME = "auth.json"
_PROJECT_DIRNAME = ".recoder"

# Environment variable -> AuthSettings field
_ENV_OVERRIDES = {
    "RECODER_API_URL": "api_base_url",
    "RECODER_CLIENT_ID": "client_id",
    "RECODER_AUTH_SCOPE": "scope",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/recoder/`` (default ``~/.config/recoder/``).
    On macOS/Windows: ``~/.recoder/``.

    The directory holds the user-global session file, so it is created
    with ``0o700`` permissions.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/recoder/`` (default ``~/.local/share/recoder/``).
    On macOS/Windows: ``~/.recoder/data/``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_project_dir() -> Path:
    """Return the project-local ``.recoder`` directory under the working directory.

    Unlike the XDG helpers this does not create the directory; it only
    appears once a project-scoped session is written.
    """
    return Path.cwd() / _PROJECT_DIRNAME


def session_path(scope: StorageScope = StorageScope.GLOBAL) -> Path:
    """Return the session file path for *scope*.

    Args:
        scope: ``GLOBAL`` for ``<config_dir>/auth.json``, ``PROJECT`` for
            ``./.recoder/auth.json``.
    """
    if scope == StorageScope.PROJECT:
        return get_project_dir() / _SESSION_FILENAME
    return get_config_dir() / _SESSION_FILENAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given it is applied to the temp file before any content is written,
    so the data is never visible with looser permissions.

    Args:
        path: Destination file. Missing parent directories are created.
        data: Text content to write (UTF-8).
        mode: Optional permission bits, e.g. ``0o600``.
    """
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


def _settings_files() -> list[Path]:
    """Settings files in increasing order of precedence."""
    return [
        get_config_dir() / _CONFIG_FILENAME,
        get_project_dir() / _CONFIG_FILENAME,
    ]


def _read_settings_file(path: Path) -> dict[str, Any]:
    """Parse one settings file, returning ``{}`` when it does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid settings file at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid settings file at {path}: expected a JSON object")
    return data


def load_settings(
    api_base_url: Optional[str] = None,
    storage_scope: Optional[StorageScope] = None,
) -> AuthSettings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. Explicit arguments (CLI flags)
        2. Environment variables (``RECODER_API_URL``, ``RECODER_CLIENT_ID``,
           ``RECODER_AUTH_SCOPE``)
        3. Project settings (``./.recoder/config.json``)
        4. User settings (``<config_dir>/config.json``)
        5. Defaults

    Returns:
        The effective :class:`~recoder_auth.models.AuthSettings`.

    Raises:
        ConfigError: If a settings file is malformed or holds invalid values.
    """
    merged: dict[str, Any] = {}
    for path in _settings_files():
        merged.update(_read_settings_file(path))

    for env_var, field in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            merged[field] = value

    if api_base_url is not None:
        merged["api_base_url"] = api_base_url
    if storage_scope is not None:
        merged["storage_scope"] = storage_scope

    try:
        return AuthSettings.model_validate(merged)
    except ValueError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc
