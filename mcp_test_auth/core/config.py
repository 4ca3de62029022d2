"""Configuration management for MCP credential resolution.

Environment variables are read in exactly one place, Settings. Everything
downstream receives an explicit ResolverConfig built from it.
"""

from dataclasses import dataclass
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..oauth.oauth_flow import DEFAULT_CLIENT_NAME
from ..oauth.oauth_tokens import StoredTokens
from ..storage.token_store import (
    ENV_ACCESS_TOKEN,
    ENV_REFRESH_TOKEN,
    ENV_TOKEN_EXPIRES_AT,
    ENV_TOKEN_TYPE,
    load_tokens_from_env,
)

DEFAULT_CALLBACK_TIMEOUT = 30.0


class Settings(BaseSettings):
    """Settings loaded from environment variables and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # CI/CD token injection
    mcp_access_token: str | None = Field(default=None, description="Pre-acquired access token")
    mcp_refresh_token: str | None = Field(default=None, description="Pre-acquired refresh token")
    mcp_token_type: str | None = Field(default=None, description="Token type (default Bearer)")
    mcp_token_expires_at: str | None = Field(
        default=None,
        description="Token expiry in Unix epoch milliseconds. Invalid values are ignored.",
    )

    # Headless detection
    ci: str | None = Field(
        default=None, description="Set by CI systems; any value except 0 or false means headless"
    )

    # Storage
    mcp_state_dir: Path | None = Field(
        default=None, description="Base directory for token storage (overrides platform default)"
    )

    # Pre-registered client (skips Dynamic Client Registration)
    mcp_client_id: str | None = Field(default=None, description="Pre-registered OAuth client ID")
    mcp_client_secret: str | None = Field(
        default=None, description="Pre-registered OAuth client secret"
    )

    # Interactive flow
    mcp_callback_port: int | None = Field(
        default=None, description="Fixed loopback callback port (default: any free port)"
    )
    mcp_oauth_timeout: float = Field(
        default=DEFAULT_CALLBACK_TIMEOUT,
        description="Seconds to wait for the OAuth callback",
        validation_alias=AliasChoices("mcp_oauth_timeout", "mcp_callback_timeout"),
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("mcp_callback_port")
    @classmethod
    def validate_callback_port(cls, v: int | None) -> int | None:
        """Ports must fit in 16 bits (0 means any free port)."""
        if v is not None and not 0 <= v <= 65535:
            raise ValueError("MCP_CALLBACK_PORT must be between 0 and 65535")
        return v

    @property
    def is_ci(self) -> bool:
        return bool(self.ci) and self.ci.strip().lower() not in ("0", "false")

    def env_tokens(self) -> StoredTokens | None:
        """Tokens injected through MCP_* variables, if any."""
        values = {
            ENV_ACCESS_TOKEN: self.mcp_access_token,
            ENV_REFRESH_TOKEN: self.mcp_refresh_token,
            ENV_TOKEN_TYPE: self.mcp_token_type,
            ENV_TOKEN_EXPIRES_AT: self.mcp_token_expires_at,
        }
        return load_tokens_from_env({k: v for k, v in values.items() if v is not None})


@dataclass
class ResolverConfig:
    """Everything CredentialResolver needs, with no ambient state."""

    server_url: str
    scopes: list[str] | None = None
    state_dir: Path | None = None
    client_id: str | None = None
    client_secret: str | None = None
    callback_port: int | None = None
    timeout_seconds: float = DEFAULT_CALLBACK_TIMEOUT
    client_name: str = DEFAULT_CLIENT_NAME
    env_tokens: StoredTokens | None = None
    headless: bool = False
    # Re-discover when cached metadata is older than this (None: never expires)
    metadata_ttl_seconds: float | None = None
    expiry_buffer_ms: int = 60_000

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        server_url: str,
        scopes: list[str] | None = None,
        state_dir: str | Path | None = None,
        **overrides,
    ) -> "ResolverConfig":
        """Build a config from Settings, with explicit arguments taking precedence.

        Args:
            settings: Loaded Settings
            server_url: MCP server URL
            scopes: Scopes to request (default: discovered scopes)
            state_dir: Base storage directory (default: MCP_STATE_DIR or platform default)
            **overrides: Any other ResolverConfig field

        Returns:
            ResolverConfig
        """
        values = {
            "server_url": server_url,
            "scopes": scopes,
            "state_dir": Path(state_dir) if state_dir else settings.mcp_state_dir,
            "client_id": settings.mcp_client_id,
            "client_secret": settings.mcp_client_secret,
            "callback_port": settings.mcp_callback_port,
            "timeout_seconds": settings.mcp_oauth_timeout,
            "env_tokens": settings.env_tokens(),
            "headless": settings.is_ci,
        }
        values.update(overrides)
        return cls(**values)
