"""ClassroomPage - navigation and readiness for Google Classroom pages.

URL shapes the sync relies on:
  /u/<n>/                      home page, one card per enrolled class
  /u/<n>/c/<courseId>          course stream
  /u/<n>/w/<courseId>/t/all    course classwork listing (all topics)
  .../c/<courseId>/a/<itemId>  assignment (sa = short answer question)
  .../c/<courseId>/m/<itemId>  material
  .../c/<courseId>/p/<itemId>  announcement post

Every navigation reloads the whole page, which is why deep sync checkpoints
before calling open_course (see crawl.py).
"""

import re
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from classroom_sync.config import SyncConfig
from classroom_sync.errors import NavigationError
from classroom_sync.logging import get_logger
from classroom_sync.models import Course, CourseLinks
from classroom_sync.utils import poll_until

log = get_logger(__name__)

COURSE_PATH_RE = re.compile(r"/(?:c|w)/([A-Za-z0-9_-]+)")
COURSE_HOME_RE = re.compile(r"/c/([A-Za-z0-9_-]+)/?$")
HOME_PATH_RE = re.compile(r"^(?:/u/\d+)?/?(?:h|home)?/?$", re.IGNORECASE)
ITEM_PATH_RE = re.compile(r"/(a|sa|m|p)/([A-Za-z0-9_-]+)")

ITEM_LINK_SELECTOR = 'a[href*="/a/"], a[href*="/sa/"], a[href*="/m/"], a[href*="/p/"]'


def course_id_from_url(url: str) -> str | None:
    """Course id from a /c/<id> or /w/<id> URL, or None."""
    match = COURSE_PATH_RE.search(urlparse(url).path)
    return match.group(1) if match else None


def is_home_url(url: str) -> bool:
    return bool(HOME_PATH_RE.match(urlparse(url).path))


class ClassroomPage:
    """One browser tab pointed at Google Classroom."""

    # Any of these means the Classroom app has rendered something useful
    CONTENT_SELECTORS = (
        '[role="main"]',
        "[data-coursework-id]",
        'a[href*="/a/"]',
        'a[href*="/m/"]',
    )
    LOAD_MORE_NAME = re.compile(r"^\s*(load|view|show) more\s*$", re.IGNORECASE)

    def __init__(self, page: Page, config: SyncConfig) -> None:
        self.page = page
        self.config = config

    @property
    def url(self) -> str:
        return self.page.url

    def current_course_id(self) -> str | None:
        return course_id_from_url(self.page.url)

    def is_home(self) -> bool:
        return is_home_url(self.page.url)

    def course_links(self, course_id: str) -> CourseLinks:
        home = self.config.home_url
        return CourseLinks(
            main=f"{home}c/{course_id}",
            items_listing=f"{home}w/{course_id}/t/all",
        )

    async def go_home(self) -> None:
        await self.goto(self.config.home_url)

    async def open_course(self, course: Course) -> None:
        """Navigate to a course's classwork listing and load all of it.

        Raises:
            NavigationError: If the page does not load within the timeout.
        """
        await self.goto(course.links.items_listing)
        await self.expand_listing()

    async def goto(self, url: str) -> None:
        timeout_ms = int(self.config.navigation_timeout_seconds * 1000)
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out opening {url}") from e
        except PlaywrightError as e:
            raise NavigationError(f"Failed to open {url}: {e}") from e

        ready = await self.wait_until_ready()
        log.info("page_navigated", url=url, ready=ready)

    async def wait_until_ready(self) -> bool:
        """Wait for Classroom content to render.

        Bounded by page_ready_timeout_seconds. On timeout, logs and returns
        False; the caller proceeds with whatever is on the page.
        """

        async def _has_content() -> bool:
            try:
                for selector in self.CONTENT_SELECTORS:
                    if await self.page.locator(selector).count() > 0:
                        return True
            except PlaywrightError:
                # Context torn down mid-check by a late redirect
                return False
            return False

        ready = await poll_until(
            _has_content,
            timeout=self.config.page_ready_timeout_seconds,
            interval=self.config.page_poll_interval_seconds,
        )
        if not ready:
            log.warning("page_ready_timeout", url=self.page.url)
        return ready

    async def _item_link_count(self) -> int:
        try:
            return await self.page.locator(ITEM_LINK_SELECTOR).count()
        except PlaywrightError:
            return 0

    async def expand_listing(self) -> int:
        """Click "Load more" until it disappears or the click cap is hit.

        Returns:
            Number of clicks performed.
        """
        clicks = 0
        for _ in range(self.config.load_more_max_clicks):
            button = self.page.get_by_role("button", name=self.LOAD_MORE_NAME)
            if await button.count() == 0:
                break

            before = await self._item_link_count()
            try:
                await button.first.click()
            except PlaywrightError as e:
                log.debug("load_more_click_failed", error=str(e))
                break
            clicks += 1

            async def _grew() -> bool:
                return await self._item_link_count() > before

            await poll_until(
                _grew,
                timeout=self.config.page_ready_timeout_seconds,
                interval=self.config.page_poll_interval_seconds,
            )

        if clicks >= self.config.load_more_max_clicks:
            log.warning("load_more_cap_reached", clicks=clicks)
        elif clicks:
            log.info("listing_expanded", clicks=clicks)
        return clicks
