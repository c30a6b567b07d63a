"""Workspace configuration loaded from QUANTCONNECT_* environment variables."""

from __future__ import annotations

from pathlib import Path

from dotenv import set_key
from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CLOUD_API_URL = "https://www.quantconnect.com/api/v2/"


class SyncSettings(BaseSettings):
    """quantsync settings.

    All fields are read from environment variables with the ``QUANTCONNECT_``
    prefix, or from a ``.env`` file in the working directory.  For example,
    ``QUANTCONNECT_UPLOAD_ON_SAVE=false`` maps to ``upload_on_save``.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUANTCONNECT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_to_file: bool = False
    """Also write a DEBUG log to ``<state_dir>/quantsync.log``."""

    # -- Remote API ------------------------------------------------------------
    cloud_api_url: str = DEFAULT_CLOUD_API_URL
    """Base URL of the LEAN REST API.  Point at another LEAN instance if needed."""

    request_timeout: float = 30.0

    # -- Credentials -----------------------------------------------------------
    api_key: SecretStr | None = None
    user_id: str | None = None

    env_file: str = ".env"
    """Where interactively entered credentials are written back to."""

    # -- Workspace -------------------------------------------------------------
    workspace_root: str = "."

    workspace_as_root_path: bool = False
    """Set projects up directly in the workspace root instead of one folder per project."""

    state_dir: str = ".quantsync"
    """Session state directory, relative to ``workspace_root``."""

    max_directory_attempts: int = 20

    # -- Upload ----------------------------------------------------------------
    upload_on_save: bool = True
    upload_skip_dialog: bool = False
    """Skip the overwrite confirmation and write to the cloud right away."""

    upload_interval: float = 0.5
    """Seconds to wait between consecutive uploads of a whole project."""

    # -- Helpers ---------------------------------------------------------------

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace_root).expanduser().resolve()

    @property
    def state_path(self) -> Path:
        return self.workspace_path / self.state_dir

    @property
    def env_path(self) -> Path:
        return self.workspace_path / self.env_file

    def api_key_value(self) -> str | None:
        return self.api_key.get_secret_value() if self.api_key else None


def persist_credentials(env_file: str | Path, api_key: str, user_id: str) -> None:
    """Write credentials into the dotenv file so the next run picks them up."""
    path = Path(env_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    set_key(str(path), "QUANTCONNECT_API_KEY", api_key)
    set_key(str(path), "QUANTCONNECT_USER_ID", user_id)


def get_settings() -> SyncSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> SyncSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return SyncSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
