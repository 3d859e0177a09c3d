"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Listkeeper"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # API
    api_prefix: str = "/api/v1"

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./listkeeper.db")
    database_busy_timeout: float = 5.0  # seconds to wait on a locked store
    database_pool_size: int = 10
    database_max_overflow: int = 5

    # Feature Flags (optional schema capabilities, fixed per deployment)
    feature_list_ordering: bool = True
    feature_list_expanded_state: bool = True

    # Lists and users
    personal_list_name: str = "Personal list"
    max_name_length: int = 256
    bcrypt_rounds: int = 12
    default_admin_username: str = "admin"
    default_admin_password: SecretStr | None = None  # seeds the first account when set

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
