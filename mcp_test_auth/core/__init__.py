"""Configuration and credential resolution."""

from .config import ResolverConfig, Settings
from .resolver import AccessTokenResult, CredentialResolver
from .sdk_storage import StoredTokenStorage

__all__ = [
    "Settings",
    "ResolverConfig",
    "CredentialResolver",
    "AccessTokenResult",
    "StoredTokenStorage",
]
