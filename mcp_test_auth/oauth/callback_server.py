"""Local loopback HTTP listener for the OAuth redirect."""

import asyncio
import html
import logging

from aiohttp import web

from ..utils.errors import (
    AuthorizationDeniedError,
    CallbackServerError,
    CallbackTimeoutError,
    MCPAuthError,
)
from .oauth_flow import validate_callback

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PATH = "/callback"

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1 style="color: {color};">{title}</h1>
    {body}
</body>
</html>
"""


def _success_page() -> str:
    return _PAGE.format(
        title="Authentication Successful",
        color="green",
        body="<p>You can close this window and return to the terminal.</p>",
    )


def _error_page(error: str, description: str | None = None) -> str:
    body = f"<p><strong>Error:</strong> <code>{html.escape(error)}</code></p>"
    if description:
        body += f"\n    <p>{html.escape(description)}</p>"
    body += "\n    <p>Please close this window and try again.</p>"
    return _PAGE.format(title="Authentication Failed", color="red", body=body)


class CallbackServer:
    """Receives the authorization redirect on a loopback address.

    The first request to the callback path settles the outcome: it is checked
    with validate_callback() and either yields the code or the matching error.

    Example:
        async with CallbackServer(state) as server:
            open_browser(build_url(redirect_uri=server.redirect_uri))
            code = await server.wait_for_code(timeout=30)
    """

    def __init__(
        self,
        expected_state: str,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = DEFAULT_CALLBACK_PATH,
    ):
        """Initialize callback server.

        Args:
            expected_state: CSRF state the callback must carry
            host: Loopback address to bind
            port: Port to bind (0 picks a free port)
            path: Callback path
        """
        self.expected_state = expected_state
        self.host = host
        self.port = port
        self.path = path
        self._runner: web.AppRunner | None = None
        self._result: asyncio.Future[str] | None = None

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    async def start(self) -> None:
        """Bind the listener. ``redirect_uri`` is final after this returns.

        Raises:
            CallbackServerError: If the address cannot be bound (e.g. port in use)
        """
        result: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_get(self.path, self._callback_handler(result))

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            raise CallbackServerError(self.host, self.port, e.strerror or str(e)) from e

        self._runner = runner
        self._result = result
        self.port = runner.addresses[0][1]
        logger.info(f"Callback server listening on {self.redirect_uri}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.debug("Callback server stopped")

    async def __aenter__(self) -> "CallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _callback_handler(self, result: asyncio.Future[str]):
        """Build the request handler that settles ``result`` once."""

        async def handle_callback(request: web.Request) -> web.Response:
            if result.done():
                return web.Response(text="Authorization already completed", status=409)

            try:
                code = validate_callback(str(request.rel_url), self.expected_state)
            except AuthorizationDeniedError as e:
                result.set_exception(e)
                return web.Response(
                    text=_error_page(e.error, e.error_description),
                    content_type="text/html",
                    status=400,
                )
            except MCPAuthError as e:
                result.set_exception(e)
                return web.Response(
                    text=_error_page(type(e).__name__, str(e)),
                    content_type="text/html",
                    status=400,
                )

            result.set_result(code)
            return web.Response(text=_success_page(), content_type="text/html")

        return handle_callback

    async def wait_for_code(self, timeout: float) -> str:
        """Wait for the callback and return the authorization code.

        Args:
            timeout: Seconds to wait

        Returns:
            The validated authorization code

        Raises:
            CallbackTimeoutError: If nothing arrives in time
            AuthorizationDeniedError, StateMismatchError,
            MissingAuthorizationCodeError: If the callback was invalid
        """
        if self._result is None:
            raise RuntimeError("CallbackServer.start() must be called first")

        logger.info("Waiting for authorization...")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError as e:
            logger.error("Authorization timeout")
            raise CallbackTimeoutError(timeout) from e
