"""
Configuration for the KIPR reference service.

Uses pydantic-settings for environment variable loading (prefix KIPR_SERVER_).
Secrets are never part of this configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, description="Bind port")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="text", description="'text' or 'json'")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # PBKDF2 rounds for stored passwords
    hash_iterations: int = Field(default=100_000, ge=1)

    model_config = {"env_prefix": "KIPR_SERVER_"}
