"""OAuth credential management for testing MCP servers.

Example:
    from mcp_test_auth import CredentialResolver, ResolverConfig, Settings

    config = ResolverConfig.from_settings(Settings(), "https://mcp.example.com/mcp")
    result = await CredentialResolver(config).get_access_token()
"""

from .core.config import ResolverConfig, Settings
from .core.resolver import AccessTokenResult, CredentialResolver
from .core.sdk_storage import StoredTokenStorage
from .oauth.oauth_tokens import StoredClientInfo, StoredServerMetadata, StoredTokens
from .storage.token_store import (
    TokenStore,
    generate_server_key,
    get_state_dir,
    has_valid_tokens,
    inject_tokens,
    load_stored_tokens,
)
from .utils.errors import MCPAuthError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Settings",
    "ResolverConfig",
    "CredentialResolver",
    "AccessTokenResult",
    "StoredTokenStorage",
    "TokenStore",
    "StoredTokens",
    "StoredClientInfo",
    "StoredServerMetadata",
    "generate_server_key",
    "get_state_dir",
    "inject_tokens",
    "load_stored_tokens",
    "has_valid_tokens",
    "MCPAuthError",
]
