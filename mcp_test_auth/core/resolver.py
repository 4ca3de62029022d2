"""Credential resolution for MCP servers.

CredentialResolver answers one question: "give me a currently valid bearer
token for this server". It tries, in order:

1. Tokens injected through the environment (CI/CD)
2. Cached tokens that are not about to expire
3. A refresh grant, if the cached tokens carry a refresh token
4. The full interactive authorization code flow with PKCE

Results of steps 3 and 4 are written back to the TokenStore.
"""

import logging
import sys
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from ..oauth.callback_server import CallbackServer
from ..oauth.discovery import discover_authorization_server, discover_protected_resource
from ..oauth.oauth_flow import (
    AuthorizationState,
    build_authorization_url,
    client_auth_for,
    exchange_code_for_tokens,
    generate_pkce,
    generate_state,
    refresh_access_token,
    register_client,
)
from ..oauth.oauth_tokens import StoredClientInfo, StoredServerMetadata, StoredTokens
from ..storage.token_store import TokenStore
from ..utils.errors import DiscoveryError, MCPAuthError, TokenRefreshError
from .config import ResolverConfig

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ["openid"]

# Registered when no fixed callback port is configured; loopback redirect
# URIs may vary by port (RFC 8252 Section 7.3)
LOOPBACK_REDIRECT_URI = "http://127.0.0.1/callback"


@dataclass
class AccessTokenResult:
    """A usable access token and how it was obtained."""

    access_token: str
    token_type: str
    expires_at: int | None
    refreshed: bool
    from_env: bool

    @classmethod
    def from_tokens(
        cls, tokens: StoredTokens, refreshed: bool = False, from_env: bool = False
    ) -> "AccessTokenResult":
        return cls(
            access_token=tokens.access_token,
            token_type=tokens.token_type,
            expires_at=tokens.expires_at,
            refreshed=refreshed,
            from_env=from_env,
        )

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


class CredentialResolver:
    """Obtains and caches OAuth access tokens for one MCP server.

    Example:
        config = ResolverConfig.from_settings(Settings(), "https://mcp.example.com/mcp")
        resolver = CredentialResolver(config)
        result = await resolver.get_access_token()
        headers = {"Authorization": result.authorization_header}
    """

    def __init__(
        self,
        config: ResolverConfig,
        store: TokenStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        open_browser: Callable[[str], bool] | None = None,
    ):
        """Initialize resolver.

        Args:
            config: Resolver configuration
            store: Token store (default: file store under config.state_dir)
            http_client: Optional shared HTTP client for all OAuth requests
            open_browser: Opens a URL, returning False on failure (default: webbrowser.open)
        """
        self.config = config
        if store is None:
            store = TokenStore(config.server_url, config.state_dir)
        self.store = store
        self.http_client = http_client
        self._open_browser = open_browser or webbrowser.open

    async def get_access_token(self) -> AccessTokenResult:
        """Get a valid access token, authenticating if necessary.

        Returns:
            AccessTokenResult describing the token and its origin

        Raises:
            MCPAuthError: Any discovery, registration, callback, exchange,
                refresh or storage failure
        """
        result = await self._resolve_without_interaction()
        if result is not None:
            return result

        logger.info("No usable stored credentials, starting interactive authorization")
        tokens = await self.authenticate()
        return AccessTokenResult.from_tokens(tokens)

    async def try_get_access_token(self) -> AccessTokenResult | None:
        """Non-raising, non-interactive variant of get_access_token().

        Only the environment, the cache and a refresh are attempted; the
        browser flow never starts. Failures are logged and reported as None.
        """
        try:
            return await self._resolve_without_interaction()
        except MCPAuthError as e:
            logger.warning(f"Could not obtain stored credentials for {self.config.server_url}: {e}")
            return None

    async def _resolve_without_interaction(self) -> AccessTokenResult | None:
        env_tokens = self.config.env_tokens
        if env_tokens is not None:
            logger.debug("Using tokens from environment variables")
            return AccessTokenResult.from_tokens(env_tokens, from_env=True)

        if self.store.has_valid_token(self.config.expiry_buffer_ms):
            stored = self.store.load_tokens()
            if stored is not None:
                logger.debug("Using cached tokens from storage")
                return AccessTokenResult.from_tokens(stored)

        stored = self.store.load_tokens()
        if stored is not None and stored.refresh_token:
            logger.info("Token expired, attempting refresh...")
            tokens = await self._refresh_stored_token(stored.refresh_token)
            return AccessTokenResult.from_tokens(tokens, refreshed=True)

        return None

    async def authenticate(self) -> StoredTokens:
        """Run the interactive authorization code flow and store the tokens.

        Server metadata is always re-discovered. Cached client registrations
        are reused.

        Returns:
            The newly stored tokens
        """
        metadata = await self.discover_servers(force=True)
        auth_server = metadata.auth_server
        protected_resource = metadata.protected_resource

        pkce = generate_pkce()
        scopes = self.config.scopes or protected_resource.scopes_supported or DEFAULT_SCOPES

        async with CallbackServer(generate_state(), port=self.config.callback_port or 0) as server:
            attempt = AuthorizationState(
                state=server.expected_state, redirect_uri=server.redirect_uri
            )
            client = await self._get_or_register_client(metadata)

            auth_url = build_authorization_url(
                auth_server,
                client_id=client.client_id,
                redirect_uri=attempt.redirect_uri,
                scopes=scopes,
                code_challenge=pkce.code_challenge,
                state=attempt.state,
                resource=protected_resource.resource,
            )
            self._present_authorization_url(auth_url)

            code = await server.wait_for_code(self.config.timeout_seconds)

        logger.info("Received authorization code, exchanging for tokens...")
        token_result = await exchange_code_for_tokens(
            auth_server,
            client_id=client.client_id,
            client_auth=client_auth_for(client.client_secret),
            code=code,
            code_verifier=pkce.code_verifier,
            redirect_uri=attempt.redirect_uri,
            http_client=self.http_client,
        )

        tokens = token_result.to_stored_tokens()
        self.store.save_tokens(tokens)
        logger.info("Successfully obtained access token")
        return tokens

    def has_stored_credentials(self) -> bool:
        """Check whether a non-empty access token is stored (it may be expired)."""
        tokens = self.store.load_tokens()
        return tokens is not None and bool(tokens.access_token)

    def clear_credentials(self) -> None:
        """Remove stored tokens. Client registration and metadata are kept."""
        self.store.delete_tokens()
        logger.debug("Cleared stored credentials")

    async def discover_servers(self, force: bool = False) -> StoredServerMetadata:
        """Return server metadata, from cache unless missing, stale or forced.

        Fresh discovery results are persisted for later refreshes.
        """
        if not force:
            cached = self.store.load_server_metadata()
            if cached is not None and not self._metadata_expired(cached):
                logger.debug("Using cached server metadata")
                return cached

        logger.debug(f"Discovering protected resource: {self.config.server_url}")
        pr_result = await discover_protected_resource(
            self.config.server_url, http_client=self.http_client
        )

        auth_servers = pr_result.metadata.authorization_servers or []
        if not auth_servers:
            raise DiscoveryError(
                "No authorization servers found in protected resource metadata",
                url=pr_result.discovery_url,
            )

        auth_server = await discover_authorization_server(
            auth_servers[0], http_client=self.http_client
        )

        metadata = StoredServerMetadata(
            auth_server=auth_server, protected_resource=pr_result.metadata
        )
        self.store.save_server_metadata(metadata)
        return metadata

    def _metadata_expired(self, metadata: StoredServerMetadata) -> bool:
        ttl = self.config.metadata_ttl_seconds
        return ttl is not None and metadata.age_seconds() > ttl

    def _configured_client(self) -> StoredClientInfo | None:
        if self.config.client_id:
            return StoredClientInfo(
                client_id=self.config.client_id, client_secret=self.config.client_secret
            )
        return None

    async def _get_or_register_client(self, metadata: StoredServerMetadata) -> StoredClientInfo:
        """Pre-configured client, else cached registration, else register one."""
        client = self._configured_client()
        if client is not None:
            logger.debug("Using pre-configured client ID")
            return client

        cached = self.store.load_client()
        if cached is not None and cached.client_id:
            logger.debug("Using cached client registration")
            return cached

        if self.config.callback_port:
            redirect_uri = f"http://127.0.0.1:{self.config.callback_port}/callback"
        else:
            redirect_uri = LOOPBACK_REDIRECT_URI

        client = await register_client(
            metadata.auth_server,
            redirect_uri=redirect_uri,
            client_name=self.config.client_name,
            scopes=self.config.scopes,
            http_client=self.http_client,
        )
        self.store.save_client(client)
        return client

    async def _refresh_stored_token(self, refresh_token: str) -> StoredTokens:
        """Refresh with cached metadata and client, then store the result."""
        metadata = await self.discover_servers()

        # Refresh tokens are bound to the client they were issued to
        client = self._configured_client() or self.store.load_client()
        if client is None:
            raise TokenRefreshError("Failed to refresh token: no client registration available")

        token_result = await refresh_access_token(
            metadata.auth_server,
            client_id=client.client_id,
            client_auth=client_auth_for(client.client_secret),
            refresh_token=refresh_token,
            http_client=self.http_client,
        )

        tokens = token_result.to_stored_tokens(previous_refresh_token=refresh_token)
        self.store.save_tokens(tokens)
        logger.info("Token refreshed successfully")
        return tokens

    def _present_authorization_url(self, url: str) -> None:
        """Open the browser, or print the URL when headless or the browser fails."""
        if self.config.headless:
            self._print_authorization_url(url)
            return

        try:
            opened = self._open_browser(url)
        except webbrowser.Error as e:
            logger.debug(f"Failed to open browser: {e}")
            opened = False

        if opened:
            logger.info("Opened browser for authentication")
        else:
            print("\nFailed to open browser automatically.", file=sys.stderr)
            self._print_authorization_url(url)

    @staticmethod
    def _print_authorization_url(url: str) -> None:
        print("\n" + "=" * 60, file=sys.stderr)
        print("Please open the following URL in your browser to authenticate:", file=sys.stderr)
        print(file=sys.stderr)
        print(url, file=sys.stderr)
        print(file=sys.stderr)
        print("=" * 60 + "\n", file=sys.stderr)
