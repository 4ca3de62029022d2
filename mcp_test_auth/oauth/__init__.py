"""OAuth 2.1 protocol building blocks for MCP servers.

Provides:
- Protected resource and authorization server discovery (RFC 9728, RFC 8414)
- Authorization code flow with PKCE, Dynamic Client Registration (RFC 7591)
- Loopback callback server and scripted browser login
"""

from .browser_login import (
    BrowserAutomation,
    LoginCredentials,
    LoginSelectors,
    complete_browser_login,
    redirect_predicate,
)
from .callback_server import CallbackServer
from .discovery import (
    MCP_PROTOCOL_VERSION,
    AuthServerMetadata,
    ProtectedResourceDiscoveryResult,
    ProtectedResourceMetadata,
    discover_authorization_server,
    discover_protected_resource,
)
from .oauth_flow import (
    AuthorizationState,
    ClientAuth,
    NoneAuth,
    PKCEPair,
    SecretBasicAuth,
    build_authorization_url,
    client_auth_for,
    exchange_code_for_tokens,
    generate_pkce,
    generate_state,
    refresh_access_token,
    register_client,
    validate_callback,
)
from .oauth_tokens import StoredClientInfo, StoredServerMetadata, StoredTokens, TokenResult

__all__ = [
    "MCP_PROTOCOL_VERSION",
    "ProtectedResourceMetadata",
    "AuthServerMetadata",
    "ProtectedResourceDiscoveryResult",
    "discover_protected_resource",
    "discover_authorization_server",
    "PKCEPair",
    "AuthorizationState",
    "ClientAuth",
    "NoneAuth",
    "SecretBasicAuth",
    "client_auth_for",
    "generate_pkce",
    "generate_state",
    "build_authorization_url",
    "validate_callback",
    "exchange_code_for_tokens",
    "refresh_access_token",
    "register_client",
    "CallbackServer",
    "BrowserAutomation",
    "LoginSelectors",
    "LoginCredentials",
    "complete_browser_login",
    "redirect_predicate",
    "StoredTokens",
    "StoredClientInfo",
    "StoredServerMetadata",
    "TokenResult",
]
