"""Signed-in browser state for Google Classroom.

The student signs in once, interactively (``classroom-sync login``). The
resulting Playwright storage state (cookies, localStorage) is kept under the
state directory and fed to every later headless context until it goes stale.
"""

import time
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from classroom_sync.errors import AuthenticationError
from classroom_sync.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page

logger = get_logger(__name__)

SIGN_IN_HOSTS = ("accounts.google.com",)
SESSION_FILE = "classroom_session.json"


def is_sign_in_url(url: str) -> bool:
    host = urlparse(url).hostname or ""
    lowered = url.lower()
    return host in SIGN_IN_HOSTS or "/signin" in lowered or "/servicelogin" in lowered


class SessionManager:
    """Saves and restores the Classroom sign-in between runs."""

    def __init__(self, state_dir: str = "data/state", max_session_age_hours: int = 24 * 7) -> None:
        self.state_file = Path(state_dir) / SESSION_FILE
        self.max_age_seconds = max_session_age_hours * 3600
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

    def session_age_seconds(self) -> float | None:
        """Seconds since the state file was written, or None if there is none."""
        try:
            return time.time() - self.state_file.stat().st_mtime
        except FileNotFoundError:
            return None

    def is_session_valid(self) -> bool:
        age = self.session_age_seconds()
        if age is None:
            logger.debug("saved_session", status="absent")
            return False
        if age > self.max_age_seconds:
            logger.info("saved_session", status="stale", age_hours=round(age / 3600, 1))
            return False
        logger.debug("saved_session", status="fresh", age_hours=round(age / 3600, 1))
        return True

    async def save_session(self, context: "BrowserContext") -> None:
        await context.storage_state(path=str(self.state_file))
        logger.info("session_stored", path=str(self.state_file))

    async def create_context(self, browser: "Browser") -> "BrowserContext":
        """New browser context, signed in when a fresh saved session exists."""
        if not self.is_session_valid():
            logger.info("browser_context", signed_in=False)
            return await browser.new_context()
        logger.info("browser_context", signed_in=True)
        return await browser.new_context(storage_state=str(self.state_file))

    def ensure_signed_in(self, page: "Page") -> None:
        """Fail fast when Classroom bounced the page to the Google sign-in screen.

        Raises:
            AuthenticationError: If the page is on a sign-in URL.
        """
        if is_sign_in_url(page.url):
            logger.error("not_signed_in", url=page.url)
            raise AuthenticationError("Not signed in to Google Classroom. Run `classroom-sync login` first.")

    async def wait_for_sign_in(self, page: "Page", home_url: str, timeout_seconds: float = 300) -> None:
        """Open Classroom in a headed browser and wait for a manual sign-in.

        Raises:
            AuthenticationError: If sign-in does not finish within the timeout.
        """
        await page.goto(home_url, wait_until="domcontentloaded")
        if not is_sign_in_url(page.url):
            logger.info("sign_in_skipped", reason="already_signed_in")
            return

        logger.info("sign_in_waiting", timeout_seconds=timeout_seconds)
        try:
            await page.wait_for_url(
                lambda url: not is_sign_in_url(url) and "classroom.google.com" in url,
                timeout=timeout_seconds * 1000,
            )
        except PlaywrightTimeoutError as e:
            raise AuthenticationError("Timed out waiting for Google sign-in") from e
        logger.info("sign_in_completed", url=page.url)

    def clear_session(self) -> None:
        self.state_file.unlink(missing_ok=True)
        logger.info("session_forgotten", path=str(self.state_file))
