"""Configuration management using Pydantic Settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    database_url: str = "sqlite:///./byok_keys.db"

    # Server-side provider keys (used for free tier, auto routing and fallback)
    gemini_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None

    # Key lifecycle
    key_max_age_days: int = 90
    kdf_default_salt: str = "uiforge-salt"
    kdf_iterations: int = 100_000

    # Fallback budget shared by every request in the process
    fallback_daily_limit: int = 100

    # Logging
    log_level: str = "INFO"
    environment: str = "dev"

    # Provider calls
    provider_timeout: int = 60
    max_output_tokens: int = 4000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
