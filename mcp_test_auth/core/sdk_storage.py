"""TokenStore adapter for the MCP Python SDK's OAuth client.

The SDK's ``OAuthClientProvider`` keeps its tokens and client registration in
a ``TokenStorage``. Passing a StoredTokenStorage makes the SDK transport share
the same per-server files as ``mcp-test login``:

    storage = StoredTokenStorage(TokenStore(server_url))
    provider = OAuthClientProvider(
        server_url=server_url,
        client_metadata=client_metadata,
        storage=storage,
        redirect_handler=redirect_handler,
        callback_handler=callback_handler,
    )

The SDK works with relative ``expires_in`` values while the store keeps an
absolute ``expires_at``; conversion happens at this boundary.
"""

import logging
from typing import Literal

from mcp.client.auth import TokenStorage
from mcp.shared.auth import OAuthClientInformationFull, OAuthToken

from ..oauth.oauth_tokens import StoredClientInfo, TokenResult, now_ms
from ..storage.token_store import TokenStore
from ..utils.errors import RegistrationError
from .resolver import LOOPBACK_REDIRECT_URI

logger = logging.getLogger(__name__)

InvalidationScope = Literal["all", "client", "tokens", "discovery"]
INVALIDATION_SCOPES: tuple[str, ...] = ("all", "client", "tokens", "discovery")


class StoredTokenStorage(TokenStorage):
    """``mcp.client.auth.TokenStorage`` backed by a TokenStore."""

    def __init__(self, store: TokenStore, redirect_uri: str = LOOPBACK_REDIRECT_URI):
        """Initialize storage adapter.

        Args:
            store: Per-server token store to read and write
            redirect_uri: Redirect URI reported for cached client registrations
                (the store does not persist one)
        """
        self.store = store
        self.redirect_uri = redirect_uri

    async def get_tokens(self) -> OAuthToken | None:
        stored = self.store.load_tokens()
        if stored is None:
            return None

        expires_in = None
        if stored.expires_at is not None:
            expires_in = max(0, (stored.expires_at - now_ms()) // 1000)

        return OAuthToken(
            access_token=stored.access_token,
            token_type=stored.token_type,
            expires_in=expires_in,
            refresh_token=stored.refresh_token,
        )

    async def set_tokens(self, tokens: OAuthToken) -> None:
        previous = self.store.load_tokens()
        result = TokenResult(
            access_token=tokens.access_token,
            token_type=tokens.token_type,
            expires_in=tokens.expires_in,
            refresh_token=tokens.refresh_token,
            scope=tokens.scope,
        )
        self.store.save_tokens(
            result.to_stored_tokens(
                previous_refresh_token=previous.refresh_token if previous else None
            )
        )

    async def get_client_info(self) -> OAuthClientInformationFull | None:
        client = self.store.load_client()
        if client is None:
            return None

        # Public clients authenticate with PKCE only
        auth_method = "client_secret_post" if client.client_secret else "none"
        return OAuthClientInformationFull(
            client_id=client.client_id,
            client_secret=client.client_secret,
            client_id_issued_at=client.client_id_issued_at,
            client_secret_expires_at=client.client_secret_expires_at,
            redirect_uris=[self.redirect_uri],
            token_endpoint_auth_method=auth_method,
        )

    async def set_client_info(self, client_info: OAuthClientInformationFull) -> None:
        if not client_info.client_id:
            raise RegistrationError("Client registration response missing client_id")

        self.store.save_client(
            StoredClientInfo(
                client_id=client_info.client_id,
                client_secret=client_info.client_secret,
                client_id_issued_at=client_info.client_id_issued_at,
                client_secret_expires_at=client_info.client_secret_expires_at,
            )
        )

    def invalidate(self, scope: InvalidationScope = "all") -> None:
        """Drop stored state after the server rejected it.

        Args:
            scope: ``tokens`` (e.g. revoked refresh token), ``client`` (unknown
                client_id), ``discovery`` (stale metadata) or ``all``

        Raises:
            ValueError: If the scope is not one of the above
        """
        if scope == "all":
            self.store.clear()
        elif scope == "tokens":
            self.store.delete_tokens()
        elif scope == "client":
            self.store.delete_client()
        elif scope == "discovery":
            self.store.delete_server_metadata()
        else:
            raise ValueError(f"Invalid scope: {scope}. Must be one of {INVALIDATION_SCOPES}")

        logger.info(f"Invalidated {scope} credentials for {self.store.server_key}")
