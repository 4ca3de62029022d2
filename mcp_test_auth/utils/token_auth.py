"""Helpers for working with pre-acquired bearer tokens."""

import base64
import json
import time


def create_token_auth_headers(access_token: str, token_type: str = "Bearer") -> dict[str, str]:
    """Build the Authorization header for a static token.

    Example:
        >>> create_token_auth_headers("abc")
        {'Authorization': 'Bearer abc'}
    """
    return {"Authorization": f"{token_type} {access_token}"}


def validate_access_token(access_token: str | None) -> None:
    """Raise ValueError if the token is missing or blank."""
    if not access_token:
        raise ValueError("Access token is required but was not provided")
    if not access_token.strip():
        raise ValueError("Access token cannot be empty")


def is_token_expired(access_token: str) -> bool:
    """Best-effort expiry check by peeking at a JWT ``exp`` claim.

    Tokens that are not JWTs, or whose payload cannot be decoded, are
    reported as not expired. Prefer the stored ``expires_at`` when available.

    Args:
        access_token: Opaque or JWT access token

    Returns:
        True only if the token is a JWT whose ``exp`` is in the past
    """
    parts = access_token.split(".")
    if len(parts) != 3 or not parts[1]:
        return False

    payload_part = parts[1]
    padded = payload_part + "=" * (-len(payload_part) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return False

    if not isinstance(payload, dict):
        return False

    exp = payload.get("exp")
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        return exp < time.time()
    return False


def is_token_expiring_soon(expires_at: int | None, buffer_ms: int = 60_000) -> bool:
    """Check whether an epoch-ms expiry falls within ``buffer_ms`` of now."""
    if expires_at is None:
        return False
    return expires_at - buffer_ms < int(time.time() * 1000)
