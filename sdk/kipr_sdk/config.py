"""
Configuration for the KIPR SDK.

Uses pydantic-settings for environment variable loading. Every setting can
be overridden with a KIPR_-prefixed variable, e.g. KIPR_BASE_URL.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_URL = "https://api.kipr.org"


class ClientSettings(BaseSettings):
    """REST client configuration loaded from environment."""

    base_url: str = Field(default=DEFAULT_URL, description="KIPR API base URL")
    timeout: float = Field(default=30.0, description="Request timeout seconds")
    verify_tls: bool = Field(default=True, description="Verify server certificates")
    user_agent: str = Field(default="kipr-sdk/1.0.0", description="User-Agent header")

    model_config = {"env_prefix": "KIPR_"}
