"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for launchauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.launchauth/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Settings** -- A single :class:`~launchauth.models.Settings` JSON file
  storing the OAuth client id, network policy and keyring preferences.
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables, and the settings file into the effective
  configuration.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so that a crash never leaves a half-written accounts
store or settings file behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from launchauth.exceptions import ConfigError
from launchauth.models import Settings

_APP_NAME = "launchauth"
_CONFIG_FILENAME = "config.json"
_ACCOUNTS_FILENAME = "accounts.json"

ENV_CLIENT_ID = "LAUNCHAUTH_CLIENT_ID"
ENV_ACCOUNTS_FILE = "LAUNCHAUTH_ACCOUNTS_FILE"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG base directories (Linux/FreeBSD)."""
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

    On Linux/BSD: ``$XDG_CONFIG_HOME/launchauth/`` (default ``~/.config/launchauth/``).
    On macOS/Windows: ``~/.launchauth/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (accounts store, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/launchauth/`` (default ``~/.local/share/launchauth/``).
    On macOS/Windows: ``~/.launchauth/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given, permissions are applied to the temp file before
    any content is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

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
        fd = None  # prevent double-close in the error path
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


def _settings_path() -> Path:
    """Path to the global settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> Settings:
    """Load the global settings from the XDG config directory.

    Returns:
        The deserialised :class:`~launchauth.models.Settings`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _settings_path()
    if not path.is_file():
        return Settings()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return Settings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid settings at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    """Persist the global settings atomically to disk."""
    data = settings.model_dump(mode="json", exclude_none=True)
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


def resolve_settings(cli_client_id: Optional[str] = None) -> Settings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_client_id``)
        2. Environment variables (``LAUNCHAUTH_CLIENT_ID``,
           ``LAUNCHAUTH_ACCOUNTS_FILE``)
        3. User config (``~/.config/launchauth/config.json``)
        4. Defaults
    """
    settings = load_settings()

    env_client_id = os.environ.get(ENV_CLIENT_ID)
    if cli_client_id:
        settings.client_id = cli_client_id
    elif env_client_id:
        settings.client_id = env_client_id

    env_accounts = os.environ.get(ENV_ACCOUNTS_FILE)
    if env_accounts:
        settings.accounts_file = env_accounts

    return settings


def get_accounts_path(settings: Settings) -> Path:
    """Return the accounts store location for *settings*.

    Defaults to ``<data_dir>/accounts.json``.
    """
    if settings.accounts_file:
        return Path(settings.accounts_file).expanduser()
    return get_data_dir() / _ACCOUNTS_FILENAME


def require_client_id(settings: Settings) -> str:
    """Return the configured OAuth client id or raise :class:`ConfigError`."""
    if not settings.client_id:
        raise ConfigError(
            "No OAuth client id configured. Pass --client-id, set "
            f"{ENV_CLIENT_ID}, or add \"client_id\" to {_settings_path()}"
        )
    return settings.client_id
