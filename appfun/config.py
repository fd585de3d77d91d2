"""
Application Configuration.

Pydantic Settings model for the APPFUN auth core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # Absolute origin used to build confirmation / password-reset links.
    SITE_URL: str = "http://localhost:4321"

    # Bounded timeout for every outbound call (identity + PostgREST).
    REQUEST_TIMEOUT_S: float = Field(default=10.0, gt=0)

    # --- Session lifetime ---
    SESSION_DURATION_HOURS: int = Field(default=24, gt=0)
    REMEMBER_ME_DAYS: int = Field(default=7, gt=0)
    SESSION_RENEWAL_THRESHOLD_HOURS: int = Field(default=24, ge=0)
    REFRESH_INTERVAL_S: float = Field(default=300.0, gt=0)

    # --- Local persistence ---
    AUTH_STORAGE_KEY: str = "supabase_auth_data"
    LOCAL_DB_PATH: str = "appfun_local.db"
    SESSION_SALT_PATH: str = str(Path.home() / ".appfun_session_salt")

    # --- Under-review (mini-program audit) mode ---
    UNDER_REVIEW_MODE: bool = False
    ALLOW_ANONYMOUS_PATHS: list[str] = Field(default_factory=lambda: [
        "/",
        "/about",
        "/software",
        "/software/*",
        "/categories",
        "/categories/*",
        "/tags",
        "/tags/*",
        "/search",
    ])

    # Simulated sign-in/sign-up when Supabase is not configured (dev only).
    OFFLINE_SIMULATION: bool = False

    # --- Invitation codes ---
    INVITATION_CODE_LENGTH: int = 8
    INVITATION_TEST_CODES: list[str] = Field(default_factory=lambda: [
        "TEST0001",
        "TEST0002",
        "TEST0003",
        "DEMO1234",
        "SAMPLE01",
    ])

    # --- Routes ---
    LOGIN_URL: str = "/auth/login"
    RETURN_URL_PARAM: str = "redirect"

    # --- Logging ---
    LOG_FILE: str = "appfun.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    # --- HTTP server ---
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing.
        The warning tells operators the app is running in offline mode.
        """
        _log = logging.getLogger("appfun.config")

        if not self.supabase_configured:
            _log.warning(
                "SUPABASE_URL or SUPABASE_ANON_KEY is empty; Supabase "
                "connectivity is disabled and auth runs in offline mode."
            )

        if self.UNDER_REVIEW_MODE:
            _log.warning(
                "UNDER_REVIEW_MODE is enabled; allow-listed paths are "
                "reachable without authentication."
            )

        return self

    @property
    def supabase_configured(self) -> bool:
        """``True`` when both the Supabase URL and anon key are present."""
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY.get_secret_value())


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    Uses a check-lock-check pattern so the fast path skips the lock.
    Prefer constructor injection of ``AppConfig``; this factory is for
    the composition root and the logger defaults.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
