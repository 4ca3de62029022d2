"""OAuth token and client data models.

Persisted models use camelCase JSON keys (``accessToken``, ``expiresAt``...) so
the files on disk match what other MCP testing tools write.
"""

import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .discovery import AuthServerMetadata, ProtectedResourceMetadata


def now_ms() -> int:
    """Current time as Unix epoch milliseconds."""
    return int(time.time() * 1000)


class _StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StoredTokens(_StoredModel):
    """OAuth tokens persisted for one server."""

    access_token: str = Field(..., description="OAuth access token")
    refresh_token: str | None = Field(None, description="OAuth refresh token")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_at: int | None = Field(None, description="Expiration, Unix epoch milliseconds")

    def is_expired(self, buffer_ms: int = 60_000) -> bool:
        """Check if the token is expired or expires within ``buffer_ms``.

        Tokens without an expiry never expire.
        """
        if self.expires_at is None:
            return False
        return self.expires_at <= now_ms() + buffer_ms


class StoredClientInfo(_StoredModel):
    """OAuth client registration, from DCR or pre-configured."""

    client_id: str
    client_secret: str | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None


class StoredServerMetadata(_StoredModel):
    """Cached discovery results for one server."""

    auth_server: AuthServerMetadata
    protected_resource: ProtectedResourceMetadata
    discovered_at: int = Field(default_factory=now_ms)

    def age_seconds(self) -> float:
        """Seconds since discovery."""
        return (now_ms() - self.discovered_at) / 1000


@dataclass
class TokenResult:
    """Parsed token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    @classmethod
    def from_oauth_response(cls, response_data: dict[str, Any]) -> "TokenResult":
        """Create from a token endpoint JSON response.

        Args:
            response_data: JSON response from token endpoint

        Returns:
            TokenResult with a normalised token type
        """
        token_type = response_data.get("token_type") or "Bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"

        expires_in = response_data.get("expires_in")
        if expires_in is not None:
            expires_in = int(expires_in)

        return cls(
            access_token=response_data["access_token"],
            token_type=token_type,
            expires_in=expires_in,
            refresh_token=response_data.get("refresh_token"),
            scope=response_data.get("scope"),
        )

    def to_stored_tokens(self, previous_refresh_token: str | None = None) -> StoredTokens:
        """Convert to a StoredTokens record stamped against the current time.

        Args:
            previous_refresh_token: Refresh token to keep if the server did not
                issue a new one

        Returns:
            StoredTokens with an absolute ``expires_at``
        """
        return StoredTokens(
            access_token=self.access_token,
            token_type=self.token_type,
            refresh_token=self.refresh_token or previous_refresh_token,
            expires_at=now_ms() + self.expires_in * 1000 if self.expires_in else None,
        )
