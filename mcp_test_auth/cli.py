"""Command line interface for MCP server credentials.

Usage:
    mcp-test login https://mcp.example.com/mcp
    mcp-test login https://mcp.example.com/mcp --force --scopes read,write
    mcp-test token https://mcp.example.com/mcp --format gh
    mcp-test logout https://mcp.example.com/mcp
    mcp-test servers
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime

from pydantic import ValidationError

from .core.config import ResolverConfig, Settings
from .core.resolver import CredentialResolver
from .logging_config import setup_logging
from .oauth.oauth_tokens import StoredTokens
from .storage.token_store import (
    ENV_ACCESS_TOKEN,
    ENV_REFRESH_TOKEN,
    ENV_TOKEN_EXPIRES_AT,
    ENV_TOKEN_TYPE,
    TOKENS_FILE,
    TokenStore,
    get_base_state_dir,
    list_known_servers,
)
from .utils.errors import InvalidServerUrlError, MCPAuthError

logger = logging.getLogger(__name__)

TOKEN_FORMATS = ("env", "json", "gh")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_scopes(value: str) -> list[str]:
    return [scope.strip() for scope in value.split(",") if scope.strip()]


def _token_env_values(tokens: StoredTokens) -> dict[str, str | int]:
    """Map stored tokens onto the MCP_* variable names, omitting unset values."""
    values: dict[str, str | int] = {ENV_ACCESS_TOKEN: tokens.access_token}
    if tokens.refresh_token:
        values[ENV_REFRESH_TOKEN] = tokens.refresh_token
    values[ENV_TOKEN_TYPE] = tokens.token_type
    if tokens.expires_at:
        values[ENV_TOKEN_EXPIRES_AT] = tokens.expires_at
    return values


def format_tokens(tokens: StoredTokens, output_format: str) -> str:
    """Render tokens for CI/CD use.

    Args:
        tokens: Stored tokens
        output_format: ``env`` (KEY=value lines), ``json`` or ``gh``
            (``gh secret set`` commands)

    Returns:
        Text to print
    """
    values = _token_env_values(tokens)

    if output_format == "json":
        return json.dumps(values, indent=2)

    if output_format == "gh":
        lines = ["# Run these commands to set GitHub Actions secrets:"]
        lines.extend(f'gh secret set {name} --body "{value}"' for name, value in values.items())
        return "\n".join(lines)

    return "\n".join(f"{name}={value}" for name, value in values.items())


def _format_expiry(expires_at: int) -> str:
    """Local time for an epoch-ms expiry, or the raw value if it is not a valid date."""
    try:
        return datetime.fromtimestamp(expires_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return f"{expires_at} (epoch ms)"


async def login(args: argparse.Namespace, settings: Settings) -> int:
    """Authenticate with a server and store the tokens."""
    config = ResolverConfig.from_settings(
        settings, args.server_url, scopes=args.scopes, state_dir=args.state_dir
    )
    resolver = CredentialResolver(config)

    try:
        if args.force:
            print("Clearing existing credentials...")
            resolver.clear_credentials()

        print(f"Authenticating with {args.server_url}...")
        result = await resolver.get_access_token()
    except MCPAuthError as e:
        print(f"\nAuthentication failed: {e}", file=sys.stderr)
        return 1

    if result.from_env:
        print("Using token from environment variables.")
    elif result.refreshed:
        print("Token refreshed successfully.")
    else:
        print("Authentication successful!")

    if result.expires_at:
        print(f"Token expires: {_format_expiry(result.expires_at)}")
    else:
        print("Token has no expiration.")

    if not result.from_env:
        print(f"\nTokens stored in: {resolver.store.state_dir}")

    return 0


def token(args: argparse.Namespace, settings: Settings) -> int:
    """Print stored tokens for CI/CD injection."""
    store = TokenStore(args.server_url, args.state_dir or settings.mcp_state_dir)

    try:
        tokens = store.load_tokens()
    except MCPAuthError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if tokens is None:
        print(f"No tokens found for {args.server_url}", file=sys.stderr)
        print(f"\nExpected location: {store.state_dir / TOKENS_FILE}", file=sys.stderr)
        print(f"\nRun 'mcp-test login {args.server_url}' to authenticate first.", file=sys.stderr)
        return 1

    print(format_tokens(tokens, args.format))
    return 0


def logout(args: argparse.Namespace, settings: Settings) -> int:
    """Remove stored tokens for a server."""
    config = ResolverConfig.from_settings(settings, args.server_url, state_dir=args.state_dir)
    resolver = CredentialResolver(config)

    try:
        had_credentials = resolver.has_stored_credentials()
        resolver.clear_credentials()
    except MCPAuthError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if had_credentials:
        print(f"Cleared stored tokens for {args.server_url}")
    else:
        print(f"No stored tokens for {args.server_url}")
    return 0


def servers(args: argparse.Namespace, settings: Settings) -> int:
    """List servers with stored state."""
    base_dir = args.state_dir or settings.mcp_state_dir

    try:
        known = list_known_servers(base_dir)
    except MCPAuthError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not known:
        print(f"No stored servers found in {base_dir or get_base_state_dir()}")
        return 0

    for server in known:
        status = "tokens" if server.has_tokens else "no tokens"
        print(f"{server.key:<40} {status:<10} {server.url or '(not discovered)'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-test",
        description="Manage OAuth credentials for testing MCP servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    login_parser = subparsers.add_parser("login", help="Authenticate with an MCP server")
    login_parser.add_argument("server_url", help="MCP server URL")
    login_parser.add_argument(
        "--force", action="store_true", help="Clear stored tokens and re-authenticate"
    )
    login_parser.add_argument("--state-dir", help="Custom directory for token storage")
    login_parser.add_argument(
        "--scopes", type=_parse_scopes, help="Comma-separated scopes to request"
    )

    token_parser = subparsers.add_parser("token", help="Print stored tokens for CI/CD")
    token_parser.add_argument("server_url", help="MCP server URL")
    token_parser.add_argument(
        "--format", choices=TOKEN_FORMATS, default="env", help="Output format (default: env)"
    )
    token_parser.add_argument("--state-dir", help="Custom directory for token storage")

    logout_parser = subparsers.add_parser("logout", help="Remove stored tokens")
    logout_parser.add_argument("server_url", help="MCP server URL")
    logout_parser.add_argument("--state-dir", help="Custom directory for token storage")

    servers_parser = subparsers.add_parser("servers", help="List servers with stored state")
    servers_parser.add_argument("--state-dir", help="Custom directory for token storage")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``mcp-test``. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging("mcp_test_auth", level=args.log_level or settings.log_level)
    logger.debug(f"Running command: {args.command}")

    try:
        if args.command == "login":
            return asyncio.run(login(args, settings))
        if args.command == "token":
            return token(args, settings)
        if args.command == "logout":
            return logout(args, settings)
        return servers(args, settings)
    except InvalidServerUrlError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
