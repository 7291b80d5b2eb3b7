"""
Shared configuration management for the SnipWire access layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="SNIPWIRE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Process
    host: str = Field(default="0.0.0.0")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_backend: str = Field(default="memory")

    # Outbound HTTP defaults
    request_timeout: float = Field(default=30.0)
    request_connect_timeout: float = Field(default=10.0)
    user_agent: str = Field(default="SnipWire/1.0 (+https://snipcart.com)")
    proxy: Optional[str] = Field(default=None)
