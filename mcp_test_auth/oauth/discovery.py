"""OAuth metadata discovery for MCP servers.

This module handles discovery via RFC 9728 (OAuth Protected Resource Metadata)
and RFC 8414 (OAuth Authorization Server Metadata).

Protected resource discovery is path-aware (RFC 9728 Section 3.1):
1. ``{origin}/.well-known/oauth-protected-resource{path}``
2. ``{origin}/.well-known/oauth-protected-resource`` (only if step 1 returned 404)

Authorization server discovery tries the RFC 8414 well-known location first and
falls back to OpenID Connect discovery.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ..utils.errors import DiscoveryError, InvalidServerUrlError
from .http import http_session

logger = logging.getLogger(__name__)

# MCP protocol revision advertised on discovery and registration requests
MCP_PROTOCOL_VERSION = "2025-06-18"

PROTECTED_RESOURCE_WELL_KNOWN = "/.well-known/oauth-protected-resource"
AUTH_SERVER_WELL_KNOWN = "/.well-known/oauth-authorization-server"
OPENID_WELL_KNOWN = "/.well-known/openid-configuration"


def discovery_headers() -> dict[str, str]:
    """Headers sent with every discovery request."""
    return {
        "Accept": "application/json",
        "MCP-Protocol-Version": MCP_PROTOCOL_VERSION,
    }


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""

    model_config = ConfigDict(extra="allow")

    resource: str
    authorization_servers: list[str] | None = None
    scopes_supported: list[str] | None = None
    bearer_methods_supported: list[str] | None = None
    resource_documentation: str | None = None
    resource_signing_alg_values_supported: list[str] | None = None


class AuthServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""

    model_config = ConfigDict(extra="allow")

    issuer: str
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    registration_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None

    def supports_pkce(self) -> bool:
        """Check if S256 PKCE is advertised."""
        return (
            self.code_challenge_methods_supported is not None
            and "S256" in self.code_challenge_methods_supported
        )

    def supports_public_clients(self) -> bool:
        """Check if public clients (no client secret) are supported."""
        return (
            self.token_endpoint_auth_methods_supported is not None
            and "none" in self.token_endpoint_auth_methods_supported
        )


@dataclass
class ProtectedResourceDiscoveryResult:
    """Outcome of protected resource discovery."""

    metadata: ProtectedResourceMetadata
    discovery_url: str
    used_path_aware_discovery: bool


def _split_absolute(url: str) -> tuple[str, str]:
    """Return (origin, path) for an absolute http(s) URL."""
    try:
        parts = urlsplit(url)
        # Accessing .port validates it
        parts.port
    except ValueError as e:
        raise InvalidServerUrlError(url) from e

    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidServerUrlError(url)

    return f"{parts.scheme}://{parts.netloc}", parts.path


async def _fetch_json(client: httpx.AsyncClient, url: str, kind: str) -> dict:
    """GET a metadata document, mapping every failure onto DiscoveryError."""
    logger.debug(f"Fetching {kind} metadata from: {url}")
    try:
        response = await client.get(url, headers=discovery_headers())
    except httpx.HTTPError as e:
        raise DiscoveryError(f"{kind} discovery failed: {e}", url=url) from e

    if response.status_code != 200:
        raise DiscoveryError(
            f"{kind} discovery failed: {response.status_code} {response.reason_phrase}",
            status=response.status_code,
            url=url,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise DiscoveryError(f"{kind} discovery returned invalid JSON", url=url) from e

    if not isinstance(data, dict):
        raise DiscoveryError(f"{kind} discovery returned a non-object document", url=url)

    return data


async def _fetch_protected_resource_metadata(
    client: httpx.AsyncClient, discovery_url: str
) -> ProtectedResourceMetadata:
    data = await _fetch_json(client, discovery_url, "Protected resource")

    if not data.get("resource"):
        raise DiscoveryError(
            'Invalid protected resource metadata: missing required "resource" field',
            url=discovery_url,
        )

    try:
        return ProtectedResourceMetadata.model_validate(data)
    except ValidationError as e:
        raise DiscoveryError(
            f"Invalid protected resource metadata: {e}", url=discovery_url
        ) from e


async def discover_protected_resource(
    server_url: str,
    http_client: httpx.AsyncClient | None = None,
) -> ProtectedResourceDiscoveryResult:
    """Discover protected resource metadata for an MCP server.

    Args:
        server_url: MCP server URL (e.g., "https://api.example.com/mcp")
        http_client: Optional client to reuse (a temporary one is created otherwise)

    Returns:
        ProtectedResourceDiscoveryResult with the metadata and which URL served it

    Raises:
        InvalidServerUrlError: If server_url is not an absolute http(s) URL
        DiscoveryError: If no valid metadata document is reachable
    """
    origin, path = _split_absolute(server_url)
    path_aware_url = f"{origin}{PROTECTED_RESOURCE_WELL_KNOWN}{path}"
    base_url = f"{origin}{PROTECTED_RESOURCE_WELL_KNOWN}"

    async def _discover(client: httpx.AsyncClient) -> ProtectedResourceDiscoveryResult:
        try:
            metadata = await _fetch_protected_resource_metadata(client, path_aware_url)
            return ProtectedResourceDiscoveryResult(metadata, path_aware_url, True)
        except DiscoveryError as e:
            # Only a 404 means "not published here"; anything else is a real failure
            if e.status != 404:
                raise

        logger.debug("Path-aware discovery returned 404, trying root well-known location")
        metadata = await _fetch_protected_resource_metadata(client, base_url)
        return ProtectedResourceDiscoveryResult(metadata, base_url, False)

    async with http_session(http_client) as client:
        result = await _discover(client)

    logger.info(f"Discovered protected resource {result.metadata.resource}")
    logger.debug(f"Protected resource metadata served from {result.discovery_url}")
    return result


def _authorization_server_candidates(issuer_url: str) -> list[str]:
    """Well-known URLs to try for an issuer, in order."""
    origin, path = _split_absolute(issuer_url)
    path = path.rstrip("/")
    return [
        # RFC 8414 Section 3.1: well-known segment inserted before the issuer path
        f"{origin}{AUTH_SERVER_WELL_KNOWN}{path}",
        # OpenID Connect Discovery: appended to the issuer
        f"{origin}{path}{OPENID_WELL_KNOWN}",
    ]


def _same_issuer(expected: str, actual: str) -> bool:
    return expected.rstrip("/") == actual.rstrip("/")


async def discover_authorization_server(
    issuer_url: str,
    http_client: httpx.AsyncClient | None = None,
) -> AuthServerMetadata:
    """Discover and validate authorization server metadata.

    Args:
        issuer_url: Authorization server issuer URL (from protected resource metadata)
        http_client: Optional client to reuse

    Returns:
        AuthServerMetadata for the issuer

    Raises:
        DiscoveryError: If no location serves valid metadata for this issuer
    """
    candidates = _authorization_server_candidates(issuer_url)

    async def _discover(client: httpx.AsyncClient) -> AuthServerMetadata:
        errors: list[DiscoveryError] = []
        for url in candidates:
            try:
                data = await _fetch_json(client, url, "Authorization server")
            except DiscoveryError as e:
                logger.debug(f"Authorization server metadata not available at {url}: {e}")
                errors.append(e)
                continue

            try:
                metadata = AuthServerMetadata.model_validate(data)
            except ValidationError as e:
                raise DiscoveryError(
                    f"Invalid authorization server metadata: {e}", url=url
                ) from e

            if not _same_issuer(issuer_url, metadata.issuer):
                raise DiscoveryError(
                    f"Authorization server metadata issuer mismatch: "
                    f"expected {issuer_url}, got {metadata.issuer}",
                    url=url,
                )
            return metadata

        # Both candidate locations failed; report the last one
        last_error = errors[-1]
        raise DiscoveryError(
            f"Failed to fetch authorization server metadata for {issuer_url}: {last_error}",
            status=last_error.status,
            url=last_error.url,
        ) from last_error

    async with http_session(http_client) as client:
        metadata = await _discover(client)

    logger.info(f"Discovered authorization server {metadata.issuer}")
    logger.debug(f"Authorization endpoint: {metadata.authorization_endpoint}")
    logger.debug(f"Token endpoint: {metadata.token_endpoint}")
    logger.debug(f"Supports PKCE: {metadata.supports_pkce()}")
    return metadata
