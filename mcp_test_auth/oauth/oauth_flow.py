"""OAuth 2.1 authorization code flow with PKCE.

Stateless building blocks for the flow: PKCE and state generation,
authorization URL construction, callback validation, Dynamic Client
Registration and the two token grants. Nothing here touches storage.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit, urlunsplit

import httpx

from ..utils.errors import (
    AuthorizationDeniedError,
    MissingAuthorizationCodeError,
    OAuthConfigurationError,
    RegistrationError,
    StateMismatchError,
    TokenEndpointError,
    TokenExchangeError,
    TokenRefreshError,
)
from .discovery import MCP_PROTOCOL_VERSION, AuthServerMetadata
from .http import http_session
from .oauth_tokens import StoredClientInfo, TokenResult

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAME = "mcp-test-auth"


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and its S256 challenge."""

    code_verifier: str
    code_challenge: str


@dataclass(frozen=True)
class AuthorizationState:
    """Values one authorization attempt is checked and completed with."""

    state: str
    redirect_uri: str


# Client authentication at the token endpoint
@dataclass(frozen=True)
class NoneAuth:
    """Public client: ``client_id`` in the request body, no secret."""

    method: str = "none"


@dataclass(frozen=True)
class SecretBasicAuth:
    """Confidential client: HTTP Basic with the client secret."""

    secret: str
    method: str = "client_secret_basic"

    def __repr__(self) -> str:
        return "SecretBasicAuth(secret=***)"


ClientAuth = NoneAuth | SecretBasicAuth


def client_auth_for(client_secret: str | None) -> ClientAuth:
    """Select the client authentication method once from configuration."""
    if client_secret:
        return SecretBasicAuth(client_secret)
    return NoneAuth()


def _compute_code_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce() -> PKCEPair:
    """Generate a PKCE code verifier and S256 challenge.

    Returns:
        PKCEPair with a 43-character verifier (RFC 7636 minimum)
    """
    code_verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii").rstrip("=")
    return PKCEPair(code_verifier, _compute_code_challenge(code_verifier))


def generate_state() -> str:
    """Generate an unguessable ``state`` value for CSRF protection."""
    return secrets.token_urlsafe(32)


def build_authorization_url(
    auth_server: AuthServerMetadata,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    code_challenge: str,
    state: str,
    resource: str | None = None,
) -> str:
    """Build the URL the user is sent to for authorization.

    Args:
        auth_server: Authorization server metadata
        client_id: OAuth client ID
        redirect_uri: Loopback redirect URI
        scopes: Scopes to request (space-joined in the URL)
        code_challenge: PKCE S256 challenge
        state: CSRF state
        resource: Optional resource indicator (RFC 8707)

    Returns:
        Authorization URL

    Raises:
        OAuthConfigurationError: If the server has no authorization endpoint
    """
    if not auth_server.authorization_endpoint:
        raise OAuthConfigurationError(
            "Authorization server does not have an authorization_endpoint"
        )

    parts = urlsplit(auth_server.authorization_endpoint)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
    )
    if resource:
        params["resource"] = resource

    return urlunsplit(parts._replace(query=urlencode(params)))


def validate_callback(callback_url: str, expected_state: str) -> str:
    """Validate the redirect back from the authorization server.

    Checks run in order: ``error`` parameter, ``state`` match, ``code``
    presence. Call this before the code is used for anything.

    Args:
        callback_url: Full callback URL including the query string
        expected_state: State sent in the authorization request

    Returns:
        The authorization code

    Raises:
        AuthorizationDeniedError: If the server returned an error
        StateMismatchError: If ``state`` is missing or different
        MissingAuthorizationCodeError: If there is no code
    """
    params = dict(parse_qsl(urlsplit(callback_url).query, keep_blank_values=True))

    error = params.get("error")
    if error:
        raise AuthorizationDeniedError(error, params.get("error_description") or None)

    state = params.get("state")
    if state is None or not secrets.compare_digest(
        state.encode("utf-8"), expected_state.encode("utf-8")
    ):
        raise StateMismatchError()

    code = params.get("code")
    if not code:
        raise MissingAuthorizationCodeError()

    return code


def _parse_oauth_error(response: httpx.Response) -> tuple[str | None, str | None]:
    """Parse an OAuth error response (RFC 6749 Section 5.2).

    Returns:
        (error, formatted "error: description") or (None, None) if the body is not
        an OAuth error document
    """
    try:
        error_data = response.json()
    except ValueError:
        return None, None

    if not isinstance(error_data, dict) or "error" not in error_data:
        return None, None

    error_code = str(error_data["error"])
    error_description = error_data.get("error_description")
    if error_description:
        return error_code, f"{error_code}: {error_description}"
    return error_code, error_code


async def _token_request(
    auth_server: AuthServerMetadata,
    client_id: str,
    client_auth: ClientAuth,
    form: dict[str, str],
    error_cls: type[TokenEndpointError],
    action: str,
    http_client: httpx.AsyncClient | None,
) -> TokenResult:
    """POST a grant to the token endpoint and parse the response."""
    if not auth_server.token_endpoint:
        raise OAuthConfigurationError("Authorization server does not have a token_endpoint")

    data = dict(form)
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }

    if isinstance(client_auth, SecretBasicAuth):
        # RFC 6749 Section 2.3.1: form-encode both parts before base64
        credentials = f"{quote_plus(client_id)}:{quote_plus(client_auth.secret)}"
        headers["Authorization"] = "Basic " + base64.b64encode(credentials.encode("utf-8")).decode(
            "ascii"
        )
    else:
        data["client_id"] = client_id

    async with http_session(http_client) as client:
        try:
            response = await client.post(auth_server.token_endpoint, data=data, headers=headers)
        except httpx.HTTPError as e:
            raise error_cls(f"Failed to {action}: {e}") from e

    if response.status_code != 200:
        error_code, error_detail = _parse_oauth_error(response)
        raise error_cls(
            f"Failed to {action}: {error_detail or f'HTTP {response.status_code}'}",
            error=error_code,
            status=response.status_code,
        )

    try:
        token_response: Any = response.json()
    except ValueError as e:
        raise error_cls(f"Failed to {action}: token response is not JSON") from e

    if not isinstance(token_response, dict) or not token_response.get("access_token"):
        raise error_cls(f"Failed to {action}: token response missing access_token")
    if not token_response.get("token_type"):
        raise error_cls(f"Failed to {action}: token response missing token_type")

    try:
        return TokenResult.from_oauth_response(token_response)
    except (TypeError, ValueError) as e:
        raise error_cls(f"Failed to {action}: malformed token response ({e})") from e


async def exchange_code_for_tokens(
    auth_server: AuthServerMetadata,
    client_id: str,
    client_auth: ClientAuth,
    code: str,
    code_verifier: str,
    redirect_uri: str,
    http_client: httpx.AsyncClient | None = None,
) -> TokenResult:
    """Exchange an authorization code for tokens.

    Raises:
        TokenExchangeError: If the token endpoint rejects the request or is unreachable
    """
    logger.debug(f"Exchanging authorization code (client auth: {client_auth.method})")
    return await _token_request(
        auth_server,
        client_id,
        client_auth,
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        TokenExchangeError,
        "exchange code for token",
        http_client,
    )


async def refresh_access_token(
    auth_server: AuthServerMetadata,
    client_id: str,
    client_auth: ClientAuth,
    refresh_token: str,
    http_client: httpx.AsyncClient | None = None,
) -> TokenResult:
    """Obtain a new access token with a refresh token.

    Raises:
        TokenRefreshError: If the token endpoint rejects the request or is unreachable
    """
    logger.debug(f"Refreshing access token (client auth: {client_auth.method})")
    return await _token_request(
        auth_server,
        client_id,
        client_auth,
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
        TokenRefreshError,
        "refresh token",
        http_client,
    )


async def register_client(
    auth_server: AuthServerMetadata,
    redirect_uri: str,
    client_name: str = DEFAULT_CLIENT_NAME,
    scopes: list[str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> StoredClientInfo:
    """Register a public OAuth client via Dynamic Client Registration (RFC 7591).

    Args:
        auth_server: Authorization server metadata
        redirect_uri: Redirect URI to register
        client_name: Human readable client name
        scopes: Optional scopes to include in the registration
        http_client: Optional client to reuse

    Returns:
        StoredClientInfo for the new client

    Raises:
        RegistrationError: If registration is unsupported or fails
    """
    if not auth_server.registration_endpoint:
        raise RegistrationError(
            "Authorization server does not support Dynamic Client Registration. "
            "Provide a pre-registered client ID instead (MCP_CLIENT_ID)."
        )

    registration_data: dict[str, Any] = {
        "redirect_uris": [redirect_uri],
        "token_endpoint_auth_method": "none",
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "client_name": client_name,
    }
    if scopes:
        registration_data["scope"] = " ".join(scopes)

    logger.info("Registering OAuth client...")

    async with http_session(http_client) as client:
        try:
            response = await client.post(
                auth_server.registration_endpoint,
                json=registration_data,
                headers={
                    "Accept": "application/json",
                    "MCP-Protocol-Version": MCP_PROTOCOL_VERSION,
                },
            )
        except httpx.HTTPError as e:
            raise RegistrationError(f"Dynamic Client Registration failed: {e}") from e

    if response.status_code not in (200, 201):
        raise RegistrationError(
            f"Dynamic Client Registration failed: {response.status_code} "
            f"{response.reason_phrase}\n{response.text}"
        )

    try:
        client_data = response.json()
    except ValueError as e:
        raise RegistrationError("Dynamic Client Registration returned invalid JSON") from e

    if not isinstance(client_data, dict) or not client_data.get("client_id"):
        raise RegistrationError("Dynamic Client Registration response missing client_id")

    def _epoch_ms(value: Any) -> int | None:
        # RFC 7591 timestamps are seconds; 0 means "never expires"
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return int(value * 1000)
        return None

    client_info = StoredClientInfo(
        client_id=client_data["client_id"],
        client_secret=client_data.get("client_secret"),
        client_id_issued_at=_epoch_ms(client_data.get("client_id_issued_at")),
        client_secret_expires_at=_epoch_ms(client_data.get("client_secret_expires_at")),
    )

    logger.info(f"Registered client: {client_info.client_id}")
    return client_info
