"""Utility modules for mcp-test-auth."""

from .errors import (
    AuthorizationDeniedError,
    CallbackServerError,
    CallbackTimeoutError,
    DiscoveryError,
    InvalidServerUrlError,
    MCPAuthError,
    MissingAuthorizationCodeError,
    OAuthConfigurationError,
    RegistrationError,
    StateMismatchError,
    StorageIOError,
    TokenEndpointError,
    TokenExchangeError,
    TokenRefreshError,
)
from .token_auth import (
    create_token_auth_headers,
    is_token_expired,
    is_token_expiring_soon,
    validate_access_token,
)

__all__ = [
    "MCPAuthError",
    "InvalidServerUrlError",
    "DiscoveryError",
    "RegistrationError",
    "OAuthConfigurationError",
    "AuthorizationDeniedError",
    "StateMismatchError",
    "MissingAuthorizationCodeError",
    "CallbackTimeoutError",
    "CallbackServerError",
    "TokenEndpointError",
    "TokenExchangeError",
    "TokenRefreshError",
    "StorageIOError",
    "create_token_auth_headers",
    "validate_access_token",
    "is_token_expired",
    "is_token_expiring_soon",
]
