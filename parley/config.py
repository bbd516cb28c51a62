"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_JWT_SECRET_BYTES = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "test", "production"] = Field(default="development")

    # Bearer tokens
    jwt_secret: str = Field(min_length=1)
    jwt_algorithm: Literal["HS256"] = Field(default="HS256")
    jwt_issuer: str | None = Field(default=None)
    access_token_expiry_minutes: int = Field(default=600, gt=0)

    # Users known to the in-memory directory: {"alice": ["USER"], "root": ["USER", "ADMIN"]}
    bootstrap_users: dict[str, list[str]] = Field(default_factory=dict)

    # Session storage
    session_store_backend: Literal["memory", "redis"] = Field(default="redis")
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0")
    redis_key_prefix: str = Field(default="parley")

    # Completion provider (OpenAI-compatible)
    provider_base_url: str = Field(default="https://api.openai.com/v1")
    provider_api_key: str | None = Field(default=None)
    provider_timeout_seconds: float = Field(default=120.0, gt=0)
    provider_connect_timeout_seconds: float = Field(default=90.0, gt=0)
    generation_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    generation_max_tokens: int = Field(default=256, gt=0)

    # Chat pipeline
    chat_system_instruction: str | None = Field(
        default="You are a helpful assistant. Answer clearly and concisely."
    )
    chat_history_max_messages: int | None = Field(default=None, gt=0)

    # API
    cors_origins: list[str] = Field(default=["http://localhost:5173", "http://localhost:3000"])

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    @field_validator("jwt_secret")
    @classmethod
    def _secret_is_long_enough(cls, value: str) -> str:
        if len(value.encode("utf-8")) < MIN_JWT_SECRET_BYTES:
            raise ValueError(f"JWT_SECRET must be at least {MIN_JWT_SECRET_BYTES} bytes")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
