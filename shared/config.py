"""
Shared configuration management for the News Relay.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RELAY_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # HTTP surface
    host: str = "0.0.0.0"
    port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "RELAY_PORT"))
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Generation backend
    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "RELAY_GEMINI_API_KEY"),
    )
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.5-flash-preview-09-2025"
    generation_timeout_seconds: float = 60.0
    chat_web_search: bool = True

    # RSS fetch proxy
    rss_cache_ttl_seconds: float = 120.0
    rss_fetch_timeout_seconds: float = 15.0
    rss_single_flight: bool = False

    # Streaming relay
    max_stream_sessions: int = 500


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str

    def __init__(self, service_name: str, **kwargs):
        super().__init__(service_name=service_name, **kwargs)


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
