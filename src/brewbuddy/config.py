from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = Field("development", env="ENVIRONMENT")
    api_title: str = Field("BrewBuddy API", env="API_TITLE")
    host: str = Field("0.0.0.0", env="HOST")
    port: int = Field(3000, env="PORT")
    log_level: str = Field("INFO", env="LOG_LEVEL")

    # Storage: PostgreSQL in production when DATABASE_URL is set, SQLite otherwise
    database_url: Optional[str] = Field(None, env="DATABASE_URL")
    database_path: str = Field("brewbuddy.db", env="DATABASE_PATH")
    database_sslmode: str = Field("require", env="DATABASE_SSLMODE")

    allowed_origins: str = Field("", env="ALLOWED_ORIGINS")
    max_users: int = Field(10, env="MAX_USERS")
    max_body_bytes: int = Field(10 * 1024 * 1024, env="MAX_BODY_BYTES")
    general_rate_limit: str = Field("100/15minutes", env="GENERAL_RATE_LIMIT")
    ai_rate_limit: str = Field("10/hour", env="AI_RATE_LIMIT")

    anthropic_api_key: Optional[str] = Field(None, env="ANTHROPIC_API_KEY")
    anthropic_api_url: str = Field(
        "https://api.anthropic.com/v1/messages", env="ANTHROPIC_API_URL"
    )
    anthropic_model: str = Field("claude-sonnet-4-20250514", env="ANTHROPIC_MODEL")
    anthropic_max_tokens: int = Field(1024, env="ANTHROPIC_MAX_TOKENS")
    vision_timeout: float = Field(60.0, env="VISION_TIMEOUT")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """Explicit allow-list plus the local dev servers in development."""
        origins = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        if self.environment.lower() == "development":
            origins.extend(o for o in DEV_ORIGINS if o not in origins)
        return origins


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
