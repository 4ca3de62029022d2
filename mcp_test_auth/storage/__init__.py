"""Persistent OAuth state storage."""

from .token_store import (
    ENV_ACCESS_TOKEN,
    ENV_REFRESH_TOKEN,
    ENV_TOKEN_EXPIRES_AT,
    ENV_TOKEN_TYPE,
    KnownServer,
    TokenStore,
    generate_server_key,
    get_base_state_dir,
    get_state_dir,
    has_valid_tokens,
    inject_tokens,
    list_known_servers,
    load_stored_tokens,
    load_tokens_from_env,
)

__all__ = [
    "TokenStore",
    "KnownServer",
    "generate_server_key",
    "get_state_dir",
    "get_base_state_dir",
    "list_known_servers",
    "load_tokens_from_env",
    "load_stored_tokens",
    "has_valid_tokens",
    "inject_tokens",
    "ENV_ACCESS_TOKEN",
    "ENV_REFRESH_TOKEN",
    "ENV_TOKEN_TYPE",
    "ENV_TOKEN_EXPIRES_AT",
]
