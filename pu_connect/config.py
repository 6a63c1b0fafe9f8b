"""
Application Configuration.

Pydantic Settings model for the PU Connect client core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import SecretStr, model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Arkesel SMS (welcome messages) ---
    ARKESEL_API_KEY: SecretStr = SecretStr("")
    ARKESEL_BASE_URL: str = "https://sms.arkesel.com/api/v2"
    ARKESEL_SENDER_ID: str = "PU Connect"
    SMS_TIMEOUT_S: float = 10.0

    # --- Branding / links ---
    APP_DISPLAY_NAME: str = "PU Connect"
    PASSWORD_RESET_REDIRECT_URL: str = "http://localhost:5173/reset-password"

    # --- Local cache ---
    LOCAL_DB_PATH: str = "pu_connect_local.db"
    PROFILE_CACHE_KEY: str = "pentvars_profile"
    CACHE_SALT_PATH: str = str(Path.home() / ".pu_connect_cache_salt")
    CACHE_KDF_ITERATIONS: int = 600_000

    # --- Presence ---
    PRESENCE_HEARTBEAT_INTERVAL_S: float = 600.0  # 10 minutes

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "pu_connect.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a hint that the client runs with placeholders.
        """
        _log = logging.getLogger("pu_connect.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL:
            _log.warning(
                "SUPABASE_URL is empty: authentication and profile sync "
                "are unavailable until it is configured."
            )

        if not self.ARKESEL_API_KEY.get_secret_value():
            _log.warning(
                "ARKESEL_API_KEY is empty: welcome SMS notifications are disabled."
            )

        return self

    # --- SMS Validation ---
    def validate_sms_config(self) -> None:
        """Validate that SMS configuration is complete.

        Raises:
            ValueError: If required SMS settings are missing.
        """
        if not self.ARKESEL_API_KEY.get_secret_value():
            raise ValueError("ARKESEL_API_KEY must be set")
        if not self.ARKESEL_BASE_URL:
            raise ValueError("ARKESEL_BASE_URL must be set")


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern so the fast path stays lock-free.

    Prefer direct constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
