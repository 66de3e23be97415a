"""Configuration management for the MCP host.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """MCP Server configuration."""
    name: str = Field(default="mcp-host")
    version: str = Field(default="0.1.0")
    icon: Optional[str] = Field(default=None)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8001)
    base_url: str = Field(default="http://localhost:8001")
    mcp_path: str = Field(default="/mcp")
    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/audit.log")
    shutdown_grace_seconds: float = Field(default=5.0, ge=0)

    # Security
    require_auth: bool = Field(default=False)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(
        env_prefix="MCP_SERVER_",
        env_file=".env",
        extra="ignore"
    )


class AuthSettings(BaseSettings):
    """
    Token verification configuration.

    ``providers`` lists the verifiers to try, in order. Each provider
    reads its own group of fields below.
    """
    providers: list[str] = Field(
        default_factory=list,
        description="jwt, introspection, github, google, auth0, azure_ad, cognito, okta"
    )
    required_scopes: list[str] = Field(default_factory=list)
    timeout_seconds: float = Field(default=10.0, gt=0)

    # Generic signed tokens
    jwks_uri: Optional[str] = None
    issuer: Optional[str] = None
    audience: Optional[str] = None
    algorithms: list[str] = Field(default_factory=lambda: ["RS256"])
    jwks_cache_ttl_seconds: int = Field(default=3600, ge=0)

    # RFC 7662 introspection
    introspection_url: Optional[str] = None
    introspection_client_id: Optional[str] = None
    introspection_client_secret: Optional[str] = None

    # Provider presets
    google_client_id: Optional[str] = None
    auth0_domain: Optional[str] = None
    auth0_audience: Optional[str] = None
    azure_tenant_id: Optional[str] = None
    azure_client_id: Optional[str] = None
    cognito_region: Optional[str] = None
    cognito_user_pool_id: Optional[str] = None
    cognito_client_id: Optional[str] = None
    okta_domain: Optional[str] = None
    okta_audience: Optional[str] = None
    okta_client_id: Optional[str] = None
    okta_client_secret: Optional[str] = None
    okta_use_introspection: bool = False

    model_config = SettingsConfigDict(
        env_prefix="MCP_AUTH_",
        env_file=".env",
        extra="ignore"
    )


class OAuthProxySettings(BaseSettings):
    """Dynamic client registration facade configuration."""
    enabled: bool = Field(default=False)
    upstream_authorization_endpoint: Optional[str] = None
    upstream_token_endpoint: Optional[str] = None
    upstream_revocation_endpoint: Optional[str] = None
    upstream_client_id: Optional[str] = None
    upstream_client_secret: Optional[str] = None
    issuer_url: Optional[str] = None
    allowed_client_redirect_uris: list[str] = Field(default_factory=list)
    valid_scopes: list[str] = Field(default_factory=list)
    forward_pkce: bool = Field(default=True)
    client_store_path: Optional[str] = Field(
        default=None,
        description="JSON file for registrations; in-memory when unset"
    )

    model_config = SettingsConfigDict(
        env_prefix="MCP_OAUTH_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    oauth_proxy: OAuthProxySettings = Field(default_factory=OAuthProxySettings)

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("MCP_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
