"""Pytest configuration and fixtures for mcp-test-auth tests."""

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from mcp_test_auth.oauth.discovery import AuthServerMetadata, ProtectedResourceMetadata
from mcp_test_auth.oauth.oauth_tokens import StoredClientInfo, StoredTokens, now_ms
from mcp_test_auth.storage.token_store import TokenStore

SERVER_URL = "https://mcp.example.com/mcp"
ISSUER = "https://auth.example.com"

_ENV_VARS = (
    "MCP_ACCESS_TOKEN",
    "MCP_REFRESH_TOKEN",
    "MCP_TOKEN_TYPE",
    "MCP_TOKEN_EXPIRES_AT",
    "MCP_STATE_DIR",
    "MCP_CLIENT_ID",
    "MCP_CLIENT_SECRET",
    "MCP_CALLBACK_PORT",
    "MCP_OAUTH_TIMEOUT",
    "MCP_CALLBACK_TIMEOUT",
    "CI",
    "LOG_LEVEL",
    "XDG_STATE_HOME",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path: Path):
    """Isolate tests from the caller's MCP_* variables and any .env file."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def server_url() -> str:
    return SERVER_URL


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Base state directory under the test's temporary directory."""
    return tmp_path / "state"


@pytest.fixture
def token_store(state_dir: Path) -> TokenStore:
    """Create a TokenStore with a temporary state directory."""
    return TokenStore(SERVER_URL, state_dir)


@pytest.fixture
def auth_server_metadata() -> AuthServerMetadata:
    """Authorization server metadata with every endpoint the flow uses."""
    return AuthServerMetadata(
        issuer=ISSUER,
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        registration_endpoint=f"{ISSUER}/register",
        scopes_supported=["mcp:read", "mcp:write"],
        response_types_supported=["code"],
        grant_types_supported=["authorization_code", "refresh_token"],
        code_challenge_methods_supported=["S256"],
        token_endpoint_auth_methods_supported=["none", "client_secret_basic"],
    )


@pytest.fixture
def protected_resource_metadata() -> ProtectedResourceMetadata:
    return ProtectedResourceMetadata(
        resource=SERVER_URL,
        authorization_servers=[ISSUER],
        scopes_supported=["mcp:read"],
    )


@pytest.fixture
def valid_tokens() -> StoredTokens:
    """Tokens that expire in an hour."""
    return StoredTokens(
        access_token="test_access_token_12345",  # pragma: allowlist secret
        refresh_token="test_refresh_token_67890",  # pragma: allowlist secret
        token_type="Bearer",
        expires_at=now_ms() + 3_600_000,
    )


@pytest.fixture
def expired_tokens() -> StoredTokens:
    """Tokens that expired an hour ago but can be refreshed."""
    return StoredTokens(
        access_token="expired_access_token",  # pragma: allowlist secret
        refresh_token="expired_refresh_token",  # pragma: allowlist secret
        token_type="Bearer",
        expires_at=now_ms() - 3_600_000,
    )


@pytest.fixture
def client_info() -> StoredClientInfo:
    return StoredClientInfo(client_id="registered-client-id")


@pytest.fixture
def mock_http():
    """Factory for an AsyncClient served by a handler, recording every request.

    Usage:
        client, requests = mock_http(lambda request: httpx.Response(200, json={...}))
    """

    def _factory(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(_record)), requests

    return _factory
