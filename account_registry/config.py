"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: runs out-of-the-box on SQLite
"""

from datetime import timedelta
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database (durable record store)
    database_url: str = "sqlite+aiosqlite:///./data/accounts.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted Postgres URLs come as postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_auto_create: bool = True

    # Accounts
    allowed_email_domains: list[str] = ["i.pkuschool.edu.cn", "pkuschool.edu.cn"]
    verification_code_ttl_minutes: int = 15
    default_token_expiration_days: int = 30
    refresh_interval_seconds: int = 300
    bcrypt_rounds: int = 12

    # Mail transport: empty URL logs codes instead of sending them
    mail_api_url: str = ""
    mail_api_key: str = ""
    mail_from: str = "Account Registry <noreply@pkuschool.edu.cn>"
    mail_timeout_seconds: float = 10.0

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def verification_code_ttl(self) -> timedelta:
        return timedelta(minutes=self.verification_code_ttl_minutes)

    @property
    def allowed_domains(self) -> frozenset[str]:
        return frozenset(d.lower() for d in self.allowed_email_domains)


@lru_cache
def get_settings() -> Settings:
    return Settings()
