"""File-based OAuth state storage, one directory per MCP server.

Each server gets a directory named by its server key holding three files:

- ``tokens.json``: access/refresh tokens
- ``client.json``: Dynamic Client Registration result
- ``server.json``: cached discovery metadata

Security considerations:
- Directories are created with mode 0700 and files with mode 0600
- Every write goes to ``<file>.tmp`` first and is renamed into place, so a
  reader never observes a partially written file
- Tokens are not encrypted; the permissions are the only protection
- There is no cross-process lock. Two processes refreshing the same server
  race and the last writer wins.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar
from urllib.parse import urlsplit

from pydantic import BaseModel, ValidationError

from ..oauth.oauth_tokens import StoredClientInfo, StoredServerMetadata, StoredTokens
from ..utils.errors import InvalidServerUrlError, StorageIOError

logger = logging.getLogger(__name__)

APP_DIR_NAME = "mcp-tests"

TOKENS_FILE = "tokens.json"
CLIENT_FILE = "client.json"
SERVER_FILE = "server.json"

DEFAULT_EXPIRY_BUFFER_MS = 60_000

# Environment variable names for CI/CD token injection
ENV_ACCESS_TOKEN = "MCP_ACCESS_TOKEN"  # nosec B105  # pragma: allowlist secret
ENV_REFRESH_TOKEN = "MCP_REFRESH_TOKEN"  # nosec B105  # pragma: allowlist secret
ENV_TOKEN_TYPE = "MCP_TOKEN_TYPE"  # nosec B105  # pragma: allowlist secret
ENV_TOKEN_EXPIRES_AT = "MCP_TOKEN_EXPIRES_AT"  # nosec B105  # pragma: allowlist secret

_DEFAULT_PORTS = {"http": 80, "https": 443}

ModelT = TypeVar("ModelT", bound=BaseModel)


def _sanitize(value: str) -> str:
    return "".join(c if c.isascii() and (c.isalnum() or c in "_.-") else "_" for c in value)


def _read_model(path: Path, model: type[ModelT]) -> ModelT | None:
    """Read and validate a JSON file, returning None if it does not exist."""
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageIOError(f"Failed to read {path}: {e}", path=str(path)) from e

    try:
        return model.model_validate(json.loads(content))
    except (json.JSONDecodeError, ValidationError) as e:
        raise StorageIOError(f"Corrupt state file {path}: {e}", path=str(path)) from e


def generate_server_key(server_url: str) -> str:
    """Generate a filesystem-safe key from a server URL.

    The key is ``hostname[_port][_path]``: the port only when it is not the
    scheme default, the path with leading/trailing slashes stripped and inner
    slashes replaced by underscores. Any character outside ``[A-Za-z0-9_.-]``
    becomes ``_``.

    Args:
        server_url: MCP server URL

    Returns:
        Filesystem-safe key string

    Raises:
        InvalidServerUrlError: If the URL is not absolute

    Example:
        >>> generate_server_key("https://api.example.com:8080/mcp")
        'api.example.com_8080_mcp'
    """
    try:
        parts = urlsplit(server_url)
        port = parts.port
    except ValueError as e:
        raise InvalidServerUrlError(server_url) from e

    if not parts.scheme or not parts.hostname:
        raise InvalidServerUrlError(server_url)

    key = parts.hostname
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        key += f"_{port}"

    clean_path = parts.path.strip("/").replace("/", "_")
    if clean_path:
        key += f"_{clean_path}"

    return _sanitize(key)


def get_base_state_dir() -> Path:
    """Get the base directory holding every server's state.

    Default locations:
    - Windows: %LOCALAPPDATA%\\mcp-tests
    - Linux: $XDG_STATE_HOME/mcp-tests when set
    - macOS and Linux otherwise: ~/.local/state/mcp-tests
    """
    if sys.platform == "win32":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / APP_DIR_NAME
        return Path.home() / "AppData" / "Local" / APP_DIR_NAME

    xdg_state_home = os.environ.get("XDG_STATE_HOME")
    if sys.platform.startswith("linux") and xdg_state_home:
        return Path(xdg_state_home) / APP_DIR_NAME

    return Path.home() / ".local" / "state" / APP_DIR_NAME


def get_state_dir(server_url: str, custom_dir: str | Path | None = None) -> Path:
    """Get the state directory for a server.

    Args:
        server_url: MCP server URL
        custom_dir: Optional base directory overriding the platform default

    Returns:
        Directory path (not created)
    """
    server_key = generate_server_key(server_url)
    base = Path(custom_dir).expanduser() if custom_dir else get_base_state_dir()
    return base / server_key


def load_tokens_from_env(environ: dict[str, str] | None = None) -> StoredTokens | None:
    """Read tokens from environment variables (for CI/CD).

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        StoredTokens if MCP_ACCESS_TOKEN is set, None otherwise
    """
    env = os.environ if environ is None else environ

    access_token = env.get(ENV_ACCESS_TOKEN)
    if not access_token:
        return None

    expires_at: int | None = None
    expires_at_str = env.get(ENV_TOKEN_EXPIRES_AT)
    if expires_at_str:
        try:
            expires_at = int(expires_at_str.strip())
        except ValueError:
            logger.warning(f"Ignoring invalid {ENV_TOKEN_EXPIRES_AT} value")

    return StoredTokens(
        access_token=access_token,
        refresh_token=env.get(ENV_REFRESH_TOKEN) or None,
        token_type=env.get(ENV_TOKEN_TYPE) or "Bearer",
        expires_at=expires_at,
    )


class TokenStore:
    """File-backed OAuth state for a single MCP server.

    "Not found" is a normal state and is reported as None/False; every other
    filesystem failure raises StorageIOError.
    """

    def __init__(self, server_url: str, state_dir: str | Path | None = None):
        """Initialize token store.

        Args:
            server_url: MCP server URL (used to derive the server key)
            state_dir: Optional base directory overriding the platform default
        """
        self.server_url = server_url
        self.server_key = generate_server_key(server_url)
        self.state_dir = get_state_dir(server_url, state_dir)
        logger.debug(f"Token storage directory: {self.state_dir}")

    @property
    def tokens_path(self) -> Path:
        return self.state_dir / TOKENS_FILE

    @property
    def client_path(self) -> Path:
        return self.state_dir / CLIENT_FILE

    @property
    def server_metadata_path(self) -> Path:
        return self.state_dir / SERVER_FILE

    # Tokens

    def load_tokens(self) -> StoredTokens | None:
        """Load stored tokens, or None if none have been saved."""
        return self._load(self.tokens_path, StoredTokens)

    def save_tokens(self, tokens: StoredTokens) -> None:
        """Persist tokens, replacing whatever was stored before."""
        self._atomic_write(self.tokens_path, tokens)
        logger.debug(f"Saved tokens for {self.server_key}")

    def delete_tokens(self) -> None:
        """Remove stored tokens. A missing file is not an error."""
        self._delete(self.tokens_path)

    def has_valid_token(self, buffer_ms: int = DEFAULT_EXPIRY_BUFFER_MS) -> bool:
        """Check for a stored, non-empty token that outlives ``buffer_ms``.

        Tokens without an expiry are treated as valid.
        """
        tokens = self.load_tokens()
        if tokens is None or not tokens.access_token:
            return False
        return not tokens.is_expired(buffer_ms)

    # Client registration

    def load_client(self) -> StoredClientInfo | None:
        return self._load(self.client_path, StoredClientInfo)

    def save_client(self, client: StoredClientInfo) -> None:
        self._atomic_write(self.client_path, client)
        logger.debug(f"Saved client registration for {self.server_key}")

    def delete_client(self) -> None:
        self._delete(self.client_path)

    # Discovery metadata

    def load_server_metadata(self) -> StoredServerMetadata | None:
        return self._load(self.server_metadata_path, StoredServerMetadata)

    def save_server_metadata(self, metadata: StoredServerMetadata) -> None:
        self._atomic_write(self.server_metadata_path, metadata)
        logger.debug(f"Saved server metadata for {self.server_key}")

    def delete_server_metadata(self) -> None:
        self._delete(self.server_metadata_path)

    def clear(self) -> None:
        """Remove tokens, client registration and server metadata."""
        for path in (self.tokens_path, self.client_path, self.server_metadata_path):
            self._delete(path)

    # File helpers

    def _load(self, path: Path, model: type[ModelT]) -> ModelT | None:
        return _read_model(path, model)

    def _delete(self, path: Path) -> None:
        try:
            path.unlink()
            logger.debug(f"Deleted {path.name} for {self.server_key}")
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError(f"Failed to delete {path}: {e}", path=str(path)) from e

    def _ensure_dir(self) -> None:
        if self.state_dir.is_dir():
            return
        self.state_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        # mkdir's mode is filtered by the umask
        os.chmod(self.state_dir, 0o700)

    def _atomic_write(
        self, path: Path, data: StoredTokens | StoredClientInfo | StoredServerMetadata
    ) -> None:
        """Write to ``<path>.tmp`` with mode 0600, then rename over ``path``."""
        content = json.dumps(data.to_json_dict(), indent=2)
        tmp_path = path.with_name(path.name + ".tmp")

        try:
            self._ensure_dir()

            # os.open sets the permissions at creation time
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                if hasattr(os, "fchmod"):
                    os.fchmod(f.fileno(), 0o600)
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise StorageIOError(f"Failed to write {path}: {e}", path=str(path)) from e


@dataclass
class KnownServer:
    """A server directory found under the base state directory."""

    key: str
    url: str | None
    has_tokens: bool


def _cached_server_url(directory: Path) -> str | None:
    """Resource URL from cached discovery metadata, if the server was discovered."""
    try:
        metadata = _read_model(directory / SERVER_FILE, StoredServerMetadata)
    except StorageIOError as e:
        logger.warning(f"Ignoring unreadable server metadata: {e}")
        return None
    return metadata.protected_resource.resource if metadata else None


def list_known_servers(base_dir: str | Path | None = None) -> list[KnownServer]:
    """List every server that has a state directory.

    The key cannot be turned back into a URL (it loses the scheme and a port
    looks like a path segment), so ``url`` comes from the cached
    ``server.json`` and is None for servers that were never discovered.

    Args:
        base_dir: Base state directory (defaults to the platform location)

    Returns:
        Known servers sorted by key; empty if the base directory is missing
    """
    base = Path(base_dir).expanduser() if base_dir else get_base_state_dir()

    try:
        entries = sorted(p for p in base.iterdir() if p.is_dir())
    except FileNotFoundError:
        return []
    except OSError as e:
        raise StorageIOError(f"Failed to list {base}: {e}", path=str(base)) from e

    return [
        KnownServer(
            key=entry.name,
            url=_cached_server_url(entry),
            has_tokens=(entry / TOKENS_FILE).is_file(),
        )
        for entry in entries
    ]


def inject_tokens(
    server_url: str, tokens: StoredTokens, state_dir: str | Path | None = None
) -> None:
    """Write tokens for a server programmatically (CI/CD setup)."""
    TokenStore(server_url, state_dir).save_tokens(tokens)


def load_stored_tokens(server_url: str, state_dir: str | Path | None = None) -> StoredTokens | None:
    """Load the tokens ``mcp-test login`` stored for a server."""
    return TokenStore(server_url, state_dir).load_tokens()


def has_valid_tokens(
    server_url: str,
    state_dir: str | Path | None = None,
    buffer_ms: int = DEFAULT_EXPIRY_BUFFER_MS,
) -> bool:
    """Check whether non-expired tokens are stored for a server."""
    return TokenStore(server_url, state_dir).has_valid_token(buffer_ms)
