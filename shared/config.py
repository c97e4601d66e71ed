"""
Shared configuration management for the Click Ledger service.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_VERSION = "1.0.0"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CLICKS_",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("CLICKS_ENV", "NODE_ENV"))
    log_level: str = "info"
    log_format: str = "json"

    # Identity provider
    issuer: str = Field(validation_alias=AliasChoices("CLICKS_ISSUER", "ZITADEL_ISSUER", "ZITADEL_DOMAIN"))
    client_id: str = Field(validation_alias=AliasChoices("CLICKS_CLIENT_ID", "ZITADEL_CLIENT_ID"))
    jwks_url: Optional[str] = None
    userinfo_url: Optional[str] = None
    http_timeout_seconds: float = 5.0

    # Persistence
    database_url: str = "sqlite:///clicks.db"

    # HTTP surface
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:5174",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:5174",
    ]
    expose_error_details: bool = False

    @property
    def issuer_base(self) -> str:
        return self.issuer.rstrip("/")

    @property
    def resolved_jwks_url(self) -> str:
        """Key set endpoint, derived from the issuer unless overridden."""
        return self.jwks_url or f"{self.issuer_base}/oauth/v2/keys"

    @property
    def resolved_userinfo_url(self) -> str:
        """Profile endpoint, derived from the issuer unless overridden."""
        return self.userinfo_url or f"{self.issuer_base}/oidc/v1/userinfo"


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = Field(default=3001, validation_alias=AliasChoices("CLICKS_PORT", "PORT", "port"))
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service.

    Environment values win over the default port; explicit overrides win
    over everything.
    """
    overrides.setdefault("service_name", service_name)
    config = ServiceConfig(**overrides)
    if "port" not in overrides and "port" not in config.model_fields_set:
        config.port = port
    return config
