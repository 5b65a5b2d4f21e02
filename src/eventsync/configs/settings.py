"""Centralized settings management for the event reconciliation engine."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings powered by pydantic-settings.

    Loads configuration from environment variables and a .env file located
    at the project root. Read once at process start and passed by reference.
    """

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -------------------------------------------------------------------------
    # PRIMARY STORE
    # -------------------------------------------------------------------------
    BASE_DIR: Path = Path(__file__).resolve().parents[3]
    DATABASE_URL: str = Field(
        default=f"sqlite:///{(Path(__file__).resolve().parents[3] / 'data' / 'events.db').as_posix()}",
        min_length=1,
    )

    # -------------------------------------------------------------------------
    # SECONDARY STORE (Supabase)
    # -------------------------------------------------------------------------
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: SecretStr | None = None

    # -------------------------------------------------------------------------
    # SCRAPING
    # -------------------------------------------------------------------------
    DEFAULT_CITY: str = "St. John's, NL"
    DEFAULT_TIMEZONE: str = "America/St_Johns"
    REQUEST_TIMEOUT_S: float = 20.0
    MAX_RETRIES: int = 4
    POLITE_DELAY_S: float = 0.4
    POLITE_JITTER_S: float = 0.35
    SCRAPER_SKIP_ENRICH: bool = False
    MAX_WORKERS: int = 4

    # -------------------------------------------------------------------------
    # PATHS
    # -------------------------------------------------------------------------
    SOURCES_CONFIG_PATH: Path = Path(__file__).resolve().parent / "sources.yaml"

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def has_supabase_config(self) -> bool:
        """Return True when both Supabase URL and service key are set."""
        key = (
            self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value()
            if self.SUPABASE_SERVICE_ROLE_KEY
            else ""
        )
        return bool(_strip_quotes(self.SUPABASE_URL) and _strip_quotes(key))

    def supabase_credentials(self) -> tuple[str, str]:
        """
        Return the (url, service_key) pair with surrounding quotes removed.

        Raises
        ------
        ValueError
            If either credential is missing.
        """
        if not self.has_supabase_config():
            raise ValueError(
                "Supabase environment not configured. "
                "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
            )
        return (
            _strip_quotes(self.SUPABASE_URL),
            _strip_quotes(self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value()),
        )


def _strip_quotes(value: str | None) -> str:
    if value is None:
        return ""
    return value.strip().strip("'\"")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns
    -------
    Settings
        The singleton settings instance.
    """
    return Settings()
