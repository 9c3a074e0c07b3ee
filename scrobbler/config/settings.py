"""
Environment-based configuration using pydantic-settings.
API tokens live in ACCOUNTS, base64-encoded, never hardcoded.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from scrobbler.services.models import Account


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # ── Core ────────────────────────────────────────────────────────────────
    ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    APP_NAME: str = "scrobbler"
    APP_VERSION: str = "1.0.0"
    CONTACT: str = "https://github.com/scrobbler/scrobbler"

    # ── Remote services ─────────────────────────────────────────────────────
    LISTENBRAINZ_API_URL: str = "https://api.listenbrainz.org"
    MUSICBRAINZ_API_URL: str = "https://musicbrainz.org"
    MUSICBRAINZ_ENABLED: bool = True

    # ── Accounts (JSON list) ────────────────────────────────────────────────
    ACCOUNTS: list[Account] = []

    # ── Storage ─────────────────────────────────────────────────────────────
    QUEUE_FILE: Path = Path("data/queue.json")
    LIBRARY_FILE: Optional[Path] = None

    # ── HTTP client ──────────────────────────────────────────────────────────
    HTTP_TIMEOUT_SECONDS: int = 30
    HTTP_RETRY_ATTEMPTS: int = 6
    HTTP_RETRY_BACKOFF: float = 3

    # ── Rate limiting ────────────────────────────────────────────────────────
    RATE_LIMIT_ATTEMPTS: int = 50

    # ── Resubmission ─────────────────────────────────────────────────────────
    MAX_LISTENS_PER_REQUEST: int = 100
    RECONCILE_INTERVAL_HOURS: int = 24
    RECONCILE_JITTER_MINUTES: int = 50

    @field_validator("QUEUE_FILE", mode="before")
    @classmethod
    def ensure_queue_dir(cls, v: Path) -> Path:
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("LISTENBRAINZ_API_URL", "MUSICBRAINZ_API_URL")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        from scrobbler.utils.url_builder import validate_base_url

        return validate_base_url(v)

    @property
    def user_agent(self) -> str:
        return f"{self.APP_NAME}/{self.APP_VERSION} ( {self.CONTACT} )"

    def get_account(self, user_id: str) -> Optional[Account]:
        return next((a for a in self.ACCOUNTS if a.user_id == user_id), None)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
