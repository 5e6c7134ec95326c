"""Extractor contract and its Playwright implementation for Google Classroom.

The sync engine only depends on the two protocols below. Extractors return an
empty list when a page has nothing to offer and raise only when the page
itself cannot be read.
"""

from datetime import datetime, timezone
from typing import Protocol
from urllib.parse import urljoin

from playwright.async_api import Locator

from classroom_sync.logging import get_logger
from classroom_sync.merge import fingerprint
from classroom_sync.models import Course, Item, ItemKind
from classroom_sync.pages.classroom import (
    COURSE_HOME_RE,
    ITEM_LINK_SELECTOR,
    ITEM_PATH_RE,
    ClassroomPage,
    course_id_from_url,
)
from classroom_sync.parse import (
    parse_due_date,
    parse_points,
    parse_relative_time,
    parse_submission_state,
)

log = get_logger(__name__)


class PageContext(Protocol):
    """The loaded browsing context the engine drives."""

    def current_course_id(self) -> str | None: ...

    def is_home(self) -> bool: ...

    async def go_home(self) -> None: ...

    async def open_course(self, course: Course) -> None: ...


class Extractor(Protocol):
    async def extract_courses(self, page: PageContext) -> list[Course]: ...

    async def extract_items(
        self, page: PageContext, course: Course, since: datetime | None = None
    ) -> list[Item]: ...


KIND_BY_CODE: dict[str, ItemKind] = {
    "a": ItemKind.ASSIGNMENT,
    "sa": ItemKind.ASSIGNMENT,
    "m": ItemKind.MATERIAL,
    "p": ItemKind.ANNOUNCEMENT,
}

# Link texts that look like items but are page chrome
NAVIGATION_LABELS: frozenset[str] = frozenset(
    {"stream", "classwork", "people", "grades", "view all", "view your work", "open", "more options"}
)

_STATUS_WORDS = ("turned in", "handed in", "missing", "assigned", "returned", "graded", "done late", "done")


def _lines(text: str | None) -> list[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def item_from_card(
    course: Course,
    link: str,
    type_code: str,
    item_id: str,
    lines: list[str],
    now: datetime,
    html: str = "",
) -> Item | None:
    """Build an Item from the text lines of one item card.

    The first line is the title. Due, points, status and posted lines are
    recognised by their wording; whatever is left becomes the description.

    Returns:
        The Item, or None when the card does not look like an item.
    """
    if not lines:
        return None
    title = lines[0]
    if len(title) < 2 or title.lower() in NAVIGATION_LABELS:
        return None

    due_text = ""
    status_text = ""
    posted_text = ""
    max_points = None
    rest: list[str] = []
    for line in lines[1:]:
        lower = line.lower()
        if not due_text and (lower.startswith("due") or "no due date" in lower):
            due_text = line
        elif max_points is None and parse_points(line) is not None:
            max_points = parse_points(line)
        elif not status_text and (lower in _STATUS_WORDS or lower.startswith(("turned in", "done late"))):
            status_text = line
        elif not posted_text and (lower.startswith(("posted", "edited")) or "ago" in lower or lower == "yesterday"):
            posted_text = line
        else:
            rest.append(line)

    item = Item(
        id=item_id,
        course_id=course.id,
        course_name=course.name,
        kind=KIND_BY_CODE.get(type_code, ItemKind.ANNOUNCEMENT),
        title=title,
        description="\n".join(rest),
        description_html=html if rest else "",
        due_at=parse_due_date(due_text, now),
        due_text=due_text,
        max_points=max_points,
        submission_state=parse_submission_state(status_text),
        link=link,
        posted_at=parse_relative_time(posted_text, now),
        scraped_at=now,
    )
    item.fingerprint = fingerprint(item)
    return item


class ClassroomExtractor:
    """Reads courses and items from the anchors Classroom renders."""

    COURSE_LINK_SELECTOR = 'a[href*="/c/"]'

    async def _card_lines(self, link: Locator) -> list[str]:
        card = link.locator("xpath=ancestor::li[1]")
        if await card.count() > 0:
            return _lines(await card.first.inner_text())
        return _lines(await link.inner_text())

    async def _card_html(self, link: Locator) -> str:
        card = link.locator("xpath=ancestor::li[1]")
        if await card.count() > 0:
            return (await card.first.inner_html()).strip()
        return ""

    async def extract_courses(self, page: ClassroomPage) -> list[Course]:
        links = page.page.locator(self.COURSE_LINK_SELECTOR)
        total = await links.count()

        courses: dict[str, Course] = {}
        for i in range(total):
            link = links.nth(i)
            href = await link.get_attribute("href") or ""
            match = COURSE_HOME_RE.search(href.split("?")[0])
            if not match or match.group(1) in courses:
                continue

            lines = _lines(await link.inner_text())
            if not lines:
                continue
            card_lines = await self._card_lines(link)
            extra = [line for line in card_lines if line not in lines[:2]]

            course_id = match.group(1)
            courses[course_id] = Course(
                id=course_id,
                name=lines[0],
                section=lines[1] if len(lines) > 1 else None,
                teacher=extra[0] if extra else None,
                links=page.course_links(course_id),
            )

        log.info("courses_extracted", courses=len(courses))
        return list(courses.values())

    async def extract_items(
        self, page: ClassroomPage, course: Course, since: datetime | None = None
    ) -> list[Item]:
        """Extract the items of one course visible on the current page.

        With ``since`` set (incremental mode), materials and announcements
        posted before it are skipped. Assignments are always kept because
        their submission state can change at any time.
        """
        links = page.page.locator(ITEM_LINK_SELECTOR)
        total = await links.count()
        now = datetime.now(timezone.utc)

        items: list[Item] = []
        seen: set[str] = set()
        skipped = 0
        for i in range(total):
            link = links.nth(i)
            href = urljoin(page.url, await link.get_attribute("href") or "")
            match = ITEM_PATH_RE.search(href)
            if not match or course_id_from_url(href) != course.id:
                continue
            type_code, item_id = match.groups()
            if item_id in seen:
                continue

            lines = await self._card_lines(link)
            item = item_from_card(course, href, type_code, item_id, lines, now, html=await self._card_html(link))
            if item is None:
                continue
            seen.add(item_id)

            if (
                since is not None
                and item.kind is not ItemKind.ASSIGNMENT
                and item.posted_at is not None
                and item.posted_at < since
            ):
                skipped += 1
                continue
            items.append(item)

        log.info(
            "items_extracted",
            course_id=course.id,
            items=len(items),
            skipped_before_since=skipped,
        )
        return items
