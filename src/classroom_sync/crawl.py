"""Crawl state machine for deep sync.

Classroom reloads the whole page on every navigation, so nothing held in
memory can be trusted to survive from one course to the next. The crawl
therefore keeps its position in a durable CrawlProgress record:

    IDLE -> SCRAPING_HOME -> SCRAPING_COURSE(i) -> ... -> FINALIZING -> IDLE
                                                   \\-> ABORTED

- Progress for course i is written *before* navigating to it. If the context
  is destroyed mid-navigation, the checkpoint is already on disk.
- Every page load calls resume(). If the current page is the course the
  checkpoint points at, that course is scraped and the crawl advances.
  Otherwise the checkpoint is stale and is discarded.
- One course failing is recorded and skipped; it never stops the crawl.
- Abort is checked at course boundaries. It discards everything gathered
  and transmits nothing.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import NoReturn

from classroom_sync.backend import SyncBackend
from classroom_sync.errors import (
    CrawlInterruptedError,
    ExtractionError,
    NoCoursesFoundError,
    SyncAbortedError,
)
from classroom_sync.extractor import Extractor, PageContext
from classroom_sync.logging import get_logger
from classroom_sync.merge import dedupe_items
from classroom_sync.models import (
    Course,
    CourseResult,
    CrawlProgress,
    Item,
    SyncMode,
    SyncPayload,
    SyncResult,
)
from classroom_sync.progress import PROGRESS_KEY, ProgressStore
from classroom_sync.status import StatusEvent, StatusSink, notify

logger = get_logger(__name__)

# Progress bar layout: 0-10 setup, 10-85 courses, 88 processing, 95 sending
PERCENT_COURSES_START = 10
PERCENT_COURSES_SPAN = 75
PERCENT_PROCESSING = 88
PERCENT_SENDING = 95


def course_percent(index: int, total: int) -> float:
    if total <= 0:
        return PERCENT_COURSES_START
    return PERCENT_COURSES_START + (index / total) * PERCENT_COURSES_SPAN


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CrawlState(str, Enum):
    IDLE = "idle"
    SCRAPING_HOME = "scraping_home"
    SCRAPING_COURSE = "scraping_course"
    FINALIZING = "finalizing"
    ABORTED = "aborted"


@dataclass
class SessionState:
    """In-memory flags for one execution context.

    Only ever trusted within a single page lifetime; across reloads the
    durable CrawlProgress is the source of truth.
    """

    running: bool = False
    mode: SyncMode | None = None
    abort_requested: bool = False

    def reset(self) -> None:
        self.running = False
        self.mode = None
        self.abort_requested = False


@dataclass
class CrawlStep:
    """Where the crawl stopped after one call."""

    state: CrawlState
    result: SyncResult | None = None

    @property
    def finished(self) -> bool:
        return self.result is not None


async def scrape_course(
    page: PageContext,
    extractor: Extractor,
    course: Course,
    since: datetime | None = None,
) -> tuple[list[Item], CourseResult]:
    """Extract one course's items, turning any failure into a failed result."""
    try:
        items = await extractor.extract_items(page, course, since=since)
    except Exception as e:
        logger.warning(
            "course_extraction_failed",
            course_id=course.id,
            course_name=course.name,
            error=str(e),
            type=type(e).__name__,
        )
        return [], CourseResult(
            course_id=course.id,
            course_name=course.name,
            success=False,
            error=str(e) or type(e).__name__,
        )

    items = [item for item in items if item.course_id == course.id]
    logger.info("course_scraped", course_id=course.id, course_name=course.name, items=len(items))
    return items, CourseResult(course_id=course.id, course_name=course.name, item_count=len(items))


class CrawlStateMachine:
    """Drives a deep sync across courses, checkpointing before every navigation."""

    def __init__(
        self,
        page: PageContext,
        extractor: Extractor,
        backend: SyncBackend,
        store: ProgressStore,
        sink: StatusSink,
        session: SessionState,
        *,
        key: str = PROGRESS_KEY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.page = page
        self.extractor = extractor
        self.backend = backend
        self.store = store
        self.sink = sink
        self.session = session
        self.key = key
        self.clock = clock
        self.state = CrawlState.IDLE

    # -- shared primitives -------------------------------------------------

    def status(self, message: str, percent: float, detail: str = "") -> None:
        notify(self.sink.on_status, StatusEvent(message=message, percent=percent, detail=detail))

    def load(self) -> CrawlProgress | None:
        return self.store.get(self.key)

    def discard(self) -> None:
        self.store.delete(self.key)

    async def extract_courses(self) -> list[Course]:
        """Read courses from the current page.

        Raises:
            ExtractionError: If the extractor fails.
            NoCoursesFoundError: If the page lists no courses.
        """
        try:
            courses = await self.extractor.extract_courses(self.page)
        except Exception as e:
            raise ExtractionError(f"Could not read courses: {e}") from e
        if not courses:
            raise NoCoursesFoundError()
        return courses

    async def transmit(
        self,
        *,
        scope: str,
        mode: SyncMode,
        courses: list[Course],
        items: list[Item],
        course_results: list[CourseResult],
        last_sync_time: datetime | None = None,
    ) -> SyncResult:
        """Deduplicate, send the payload, and build the caller's result.

        Raises:
            TransmissionError: If the backend call fails. Never retried.
        """
        self.status("Processing items...", PERCENT_PROCESSING)
        unique_items = dedupe_items(items)
        if len(unique_items) != len(items):
            logger.info("items_deduplicated", before=len(items), after=len(unique_items))

        payload = SyncPayload(
            scope=scope,
            courses=courses,
            items=unique_items,
            last_updated=self.clock(),
            mode=mode,
            last_sync_time=last_sync_time,
            sync_results=course_results,
        )
        self.status("Sending to backend...", PERCENT_SENDING)
        response = await self.backend.post_sync(payload)

        return SyncResult(
            mode=mode,
            scope=scope,
            courses=courses,
            items=unique_items,
            last_updated=payload.last_updated,
            course_results=course_results,
            changes=response.changes,
        )

    # -- transitions -------------------------------------------------------

    async def begin(self, scope: str, last_sync_time: datetime | None = None) -> CrawlStep:
        """Start a fresh crawl from the home page."""
        self.state = CrawlState.SCRAPING_HOME
        self.status("Finding your classes...", 5)
        if not self.page.is_home():
            await self.page.go_home()

        courses = await self.extract_courses()
        self.status(f"Found {len(courses)} classes", PERCENT_COURSES_START)
        logger.info("crawl_started", scope=scope, courses=len(courses))

        progress = CrawlProgress(
            scope=scope,
            courses=courses,
            started_at=self.clock(),
            last_sync_time=last_sync_time,
        )
        return await self.advance(progress, 0)

    async def advance(self, progress: CrawlProgress, index: int) -> CrawlStep:
        """Checkpoint, then navigate to course ``index``.

        A course whose page cannot be opened is recorded as failed and the
        next one is tried. Past the last course, the crawl finalizes.
        """
        total = len(progress.courses)
        while index < total:
            if self.session.abort_requested:
                self.abort()

            course = progress.courses[index]
            progress.current_index = index
            self.store.put(self.key, progress)

            self.state = CrawlState.SCRAPING_COURSE
            self.status(f"Syncing: {course.name} ({index + 1}/{total})", course_percent(index, total))
            try:
                await self.page.open_course(course)
            except Exception as e:
                logger.warning("course_navigation_failed", course_id=course.id, error=str(e))
                progress.course_results.append(
                    CourseResult(
                        course_id=course.id,
                        course_name=course.name,
                        success=False,
                        error=str(e) or type(e).__name__,
                    )
                )
                index += 1
                continue
            return CrawlStep(CrawlState.SCRAPING_COURSE)

        progress.current_index = total
        return await self.finalize(progress)

    async def resume(self) -> CrawlStep:
        """Pick up a checkpointed crawl on the page that just loaded."""
        progress = self.load()
        if progress is None:
            self.state = CrawlState.IDLE
            return CrawlStep(CrawlState.IDLE)

        expected = progress.current_course
        current_id = self.page.current_course_id()
        if expected is None or current_id != expected.id:
            logger.info(
                "stale_progress_discarded",
                expected=expected.id if expected else None,
                current=current_id,
                current_index=progress.current_index,
            )
            self.discard()
            self.state = CrawlState.IDLE
            return CrawlStep(CrawlState.IDLE)

        index = progress.current_index
        total = len(progress.courses)
        self.state = CrawlState.SCRAPING_COURSE
        self.status(f"Syncing: {expected.name} ({index + 1}/{total})", course_percent(index, total))

        items, result = await scrape_course(self.page, self.extractor, expected, since=progress.last_sync_time)
        progress.accumulated_items.extend(items)
        progress.course_results.append(result)

        if self.session.abort_requested:
            self.abort()
        return await self.advance(progress, index + 1)

    async def finalize(self, progress: CrawlProgress) -> CrawlStep:
        """Transmit the accumulated items and clear the checkpoint.

        The checkpoint is cleared whether or not transmission succeeds.
        """
        self.state = CrawlState.FINALIZING
        try:
            result = await self.transmit(
                scope=progress.scope,
                mode=SyncMode.DEEP,
                courses=progress.courses,
                items=progress.accumulated_items,
                course_results=progress.course_results,
                last_sync_time=progress.last_sync_time,
            )
        finally:
            self.discard()
            self.state = CrawlState.IDLE

        logger.info(
            "crawl_finished",
            courses=len(result.courses),
            items=len(result.items),
            failed=sum(1 for r in result.course_results if not r.success),
        )
        return CrawlStep(CrawlState.IDLE, result)

    def abort(self) -> NoReturn:
        """Drop all progress and stop. Nothing is transmitted."""
        self.discard()
        self.state = CrawlState.ABORTED
        logger.info("crawl_aborted")
        raise SyncAbortedError()

    # -- drivers -----------------------------------------------------------

    async def drive(self, step: CrawlStep) -> SyncResult:
        """Keep resuming after each navigation until the crawl finishes."""
        while not step.finished:
            step = await self.resume()
            if step.state is CrawlState.IDLE and not step.finished:
                raise CrawlInterruptedError("Crawl progress disappeared before the deep sync finished")
        return step.result

    async def run(self, scope: str) -> SyncResult:
        """Run a deep sync to completion in this process.

        A checkpoint for this scope that matches the current page is
        resumed; anything else is discarded and a fresh crawl begins. Errors
        clear the checkpoint. Cancellation (CancelledError, KeyboardInterrupt)
        keeps it so the crawl can be resumed later.
        """
        try:
            progress = self.load()
            if progress is not None and progress.scope != scope:
                logger.info("foreign_progress_discarded", progress_scope=progress.scope, scope=scope)
                self.discard()
            step = await self.resume()
            if not step.finished and step.state is CrawlState.IDLE:
                step = await self.begin(scope)
            return await self.drive(step)
        except Exception:
            self.discard()
            if self.state is not CrawlState.ABORTED:
                self.state = CrawlState.IDLE
            raise

    async def continue_existing(self) -> SyncResult | None:
        """Resume a checkpointed crawl if the current page matches it.

        Returns None when there is nothing to resume.
        """
        try:
            step = await self.resume()
            if not step.finished and step.state is CrawlState.IDLE:
                return None
            return await self.drive(step)
        except Exception:
            self.discard()
            if self.state is not CrawlState.ABORTED:
                self.state = CrawlState.IDLE
            raise
