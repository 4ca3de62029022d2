"""Scripted login through an external browser automation helper.

Used for one-time unattended setup (e.g. a test suite's global setup) where a
test user's credentials are typed into the authorization server's login form.
Any automation engine can be plugged in by implementing BrowserAutomation.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol
from urllib.parse import parse_qsl, urlsplit

from pydantic import BaseModel, Field, SecretStr

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_TIMEOUT = 30.0
CONSENT_TIMEOUT = 5.0


class BrowserAutomation(Protocol):
    """What the login sequence needs from a browser driver."""

    async def goto(self, url: str) -> None: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def click(self, selector: str, timeout: float | None = None) -> None: ...

    async def wait_for_url(self, predicate: Callable[[str], bool], timeout: float) -> None: ...

    def current_url(self) -> str: ...


class LoginSelectors(BaseModel):
    """Form element selectors on the authorization server's login page."""

    username_input: str
    password_input: str
    submit_button: str
    consent_button: str | None = Field(
        default=None, description="Clicked after login if it appears"
    )


class LoginCredentials(BaseModel):
    """Test user credentials."""

    username: str
    password: SecretStr


def redirect_predicate(redirect_uri: str) -> Callable[[str], bool]:
    """Match a URL that is the redirect URI carrying ``code`` or ``error``."""

    def _matches(url: str) -> bool:
        if not url.startswith(redirect_uri):
            return False
        params = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
        return "code" in params or "error" in params

    return _matches


async def complete_browser_login(
    browser: BrowserAutomation,
    authorization_url: str,
    redirect_uri: str,
    selectors: LoginSelectors,
    credentials: LoginCredentials,
    timeout: float = DEFAULT_LOGIN_TIMEOUT,
) -> str:
    """Drive the login form and return the callback URL.

    The returned URL is not validated here; pass it to validate_callback().

    Args:
        browser: Automation helper
        authorization_url: URL from build_authorization_url()
        redirect_uri: Redirect URI used in that URL
        selectors: Login form selectors
        credentials: Test user credentials
        timeout: Seconds to wait for the redirect

    Returns:
        The browser URL once it reached the redirect URI
    """
    logger.info("Navigating to authorization URL")
    await browser.goto(authorization_url)

    await browser.fill(selectors.username_input, credentials.username)
    await browser.fill(selectors.password_input, credentials.password.get_secret_value())
    await browser.click(selectors.submit_button)

    if selectors.consent_button:
        try:
            await browser.click(selectors.consent_button, timeout=CONSENT_TIMEOUT)
        except (asyncio.TimeoutError, TimeoutError):
            # Consent screen is skipped when consent was already granted
            logger.debug("No consent screen shown")

    await browser.wait_for_url(redirect_predicate(redirect_uri), timeout)
    callback_url = browser.current_url()
    logger.info("Browser reached redirect URI")
    return callback_url
