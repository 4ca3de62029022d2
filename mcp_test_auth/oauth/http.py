"""Shared httpx client handling for OAuth requests."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

DEFAULT_TIMEOUT = 10.0


@asynccontextmanager
async def http_session(
    client: httpx.AsyncClient | None = None, timeout: float = DEFAULT_TIMEOUT
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield ``client`` if given, otherwise a temporary AsyncClient.

    Callers that pass their own client keep ownership of it.
    """
    if client is not None:
        yield client
        return

    async with httpx.AsyncClient(timeout=timeout) as new_client:
        yield new_client
