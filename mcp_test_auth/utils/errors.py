"""Error types for MCP OAuth credential management."""


class MCPAuthError(Exception):
    """Base exception for credential management errors."""

    pass


class InvalidServerUrlError(MCPAuthError):
    """Raised when a server URL cannot be parsed as an absolute URL."""

    def __init__(self, url: str):
        super().__init__(f"Invalid URL: {url}")
        self.url = url


class DiscoveryError(MCPAuthError):
    """Raised when no valid metadata document could be fetched."""

    def __init__(self, message: str, status: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status = status
        self.url = url


class RegistrationError(MCPAuthError):
    """Raised when Dynamic Client Registration fails."""

    pass


class OAuthConfigurationError(MCPAuthError):
    """Raised when server metadata lacks something the flow requires."""

    pass


# Callback errors
class AuthorizationDeniedError(MCPAuthError):
    """Raised when the authorization callback carries an ``error`` parameter."""

    def __init__(self, error: str, error_description: str | None = None):
        message = f"OAuth error: {error}"
        if error_description:
            message += f" - {error_description}"
        super().__init__(message)
        self.error = error
        self.error_description = error_description


class StateMismatchError(MCPAuthError):
    """Raised when the callback state does not match the one we sent."""

    def __init__(self):
        super().__init__("OAuth state mismatch - possible CSRF attack")


class MissingAuthorizationCodeError(MCPAuthError):
    """Raised when the callback has no ``code`` parameter."""

    def __init__(self):
        super().__init__("No authorization code in callback URL")


class CallbackTimeoutError(MCPAuthError):
    """Raised when no callback arrives before the timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"OAuth flow timed out after {timeout:g}s waiting for callback")
        self.timeout = timeout


class CallbackServerError(MCPAuthError):
    """Raised when the loopback callback listener cannot be started."""

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(f"Could not listen on {host}:{port}: {reason}")
        self.host = host
        self.port = port


# Token endpoint errors
class TokenEndpointError(MCPAuthError):
    """Base for failures reported by (or talking to) the token endpoint."""

    def __init__(self, message: str, error: str | None = None, status: int | None = None):
        super().__init__(message)
        self.error = error
        self.status = status


class TokenExchangeError(TokenEndpointError):
    """Raised when the authorization code grant fails."""

    pass


class TokenRefreshError(TokenEndpointError):
    """Raised when the refresh token grant fails."""

    pass


class StorageIOError(MCPAuthError):
    """Raised for filesystem failures other than a missing file."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path
