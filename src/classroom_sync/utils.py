"""Shared browser utilities: resource blocking and bounded polling."""

from collections.abc import Awaitable, Callable

from playwright.async_api import Page, Route
from tenacity import AsyncRetrying, retry_if_result, stop_after_delay, wait_fixed

from classroom_sync.logging import get_logger

log = get_logger(__name__)

# Classroom renders its lists from XHR data, so stylesheets and scripts stay
BLOCKED_RESOURCE_TYPES: frozenset[str] = frozenset({"image", "font", "media"})


async def configure_page_for_scraping(page: Page, *, timeout_ms: int = 30000) -> None:
    """Set up a Playwright page for efficient scraping.

    Blocks images, fonts and media to cut bandwidth, and applies default
    action and navigation timeouts.

    Args:
        page: Playwright Page instance.
        timeout_ms: Default timeout for actions and navigations.
    """

    async def _block_resources(route: Route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    await page.route("**/*", _block_resources)
    page.set_default_timeout(timeout_ms)
    page.set_default_navigation_timeout(timeout_ms)


async def poll_until(
    predicate: Callable[[], Awaitable[bool]],
    *,
    timeout: float,
    interval: float,
) -> bool:
    """Poll ``predicate`` until it returns True or ``timeout`` seconds pass.

    Never raises on timeout: returns False so the caller can carry on with
    whatever content did load.
    """
    retrying = AsyncRetrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda ready: not ready),
        retry_error_callback=lambda retry_state: False,
    )
    return await retrying(predicate)
