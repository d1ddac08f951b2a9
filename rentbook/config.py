"""Application configuration from environment variables."""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./rentbook.db",
        description="SQLAlchemy connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Server log file")

    # Lookups
    lookup_cache_ttl_seconds: int = Field(
        default=300,
        description="Lifetime of cached tenancy/tenant/unit lookup maps",
    )

    # Attachments
    attachments_dir: str = Field(
        default="attachments",
        description="Directory where payment proofs are stored",
    )

    # Locale
    locale: str = Field(default="en_IN", description="Locale for month labels and amounts")

    # API
    api_title: str = Field(default="rentbook API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")


# Global settings instance
settings = Settings()
