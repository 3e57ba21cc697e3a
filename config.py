"""
Sharely configuration.

All settings come from environment variables (or a local .env file) and are
validated once at startup.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # === MongoDB ===
    database_url: Optional[str] = Field(default=None, description="MongoDB connection URI")
    database_name: Optional[str] = Field(default=None, description="MongoDB database name")

    # === Captioning (Gemini) ===
    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API key")
    gemini_model: str = Field(default="gemini-2.5-flash")
    gemini_timeout_seconds: float = Field(default=30.0, gt=0)

    # === Avatars ===
    unsplash_access_key: Optional[str] = Field(default=None)

    # === HTTP ===
    cors_origins: str = Field(default="*", description="Comma-separated list of allowed CORS origins")
    port: int = Field(default=8000)

    # === Logging ===
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="simple", description="simple or json")

    # === Error tracking (Sentry) ===
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN, tracking is off when unset")
    sentry_environment: Optional[str] = Field(default=None)
    sentry_traces_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    sentry_profiles_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    seed_demo_data: bool = Field(default=False)

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
