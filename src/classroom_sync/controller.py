"""Sync session controller: quick, incremental and deep sync.

All three modes are built from the crawl state machine's primitives
(extract_courses, scrape_course, transmit). Only deep sync navigates and
survives page reloads.

At most one sync runs per execution context. Starting another while one is
active returns a SyncResult with status ``already_running``; it is neither
queued nor treated as an error.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from classroom_sync.backend import SyncBackend
from classroom_sync.crawl import (
    PERCENT_COURSES_START,
    CrawlStateMachine,
    SessionState,
    course_percent,
    scrape_course,
    utc_now,
)
from classroom_sync.errors import BackendError, SyncAbortedError
from classroom_sync.extractor import Extractor, PageContext
from classroom_sync.logging import bind_sync_context, get_logger
from classroom_sync.merge import count_by_kind
from classroom_sync.models import CourseResult, Item, SyncMode, SyncResult, SyncStatus
from classroom_sync.progress import PROGRESS_KEY, ProgressStore
from classroom_sync.status import CompletionEvent, ErrorEvent, LoggingStatusSink, StatusSink, notify

logger = get_logger(__name__)


class SyncController:
    """Starts, aborts and completes syncs for one browsing context."""

    def __init__(
        self,
        page: PageContext,
        extractor: Extractor,
        backend: SyncBackend,
        store: ProgressStore,
        sink: StatusSink | None = None,
        *,
        session: SessionState | None = None,
        progress_key: str = PROGRESS_KEY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.page = page
        self.extractor = extractor
        self.backend = backend
        self.sink = sink or LoggingStatusSink()
        self.session = session or SessionState()
        self.crawl = CrawlStateMachine(
            page,
            extractor,
            backend,
            store,
            self.sink,
            self.session,
            key=progress_key,
            clock=clock,
        )

    @property
    def running(self) -> bool:
        return self.session.running

    def abort(self) -> None:
        """Request an abort; honoured at the next course boundary."""
        if not self.session.running:
            logger.debug("abort_ignored", reason="no_sync_running")
            return
        self.session.abort_requested = True
        logger.info("abort_requested", mode=self.session.mode.value if self.session.mode else None)

    # -- public entry points -------------------------------------------------

    async def run_quick_sync(self, scope: str) -> SyncResult:
        return await self._run(SyncMode.QUICK, scope, self._quick)

    async def run_incremental_sync(self, scope: str) -> SyncResult:
        return await self._run(SyncMode.INCREMENTAL, scope, self._incremental)

    async def run_deep_sync(self, scope: str) -> SyncResult:
        return await self._run(SyncMode.DEEP, scope, self.crawl.run)

    async def initialize(self) -> SyncResult | None:
        """Resume a deep sync after a reload or restart, if one is pending.

        Returns None when there is no checkpoint, when the checkpoint does
        not match the current page (it is discarded), or when a sync is
        already running in this context.
        """
        if self.session.running:
            return None
        progress = self.crawl.load()
        if progress is None:
            return None
        logger.info(
            "crawl_checkpoint_found",
            scope=progress.scope,
            current_index=progress.current_index,
            courses=len(progress.courses),
        )
        result = await self._run(SyncMode.DEEP, progress.scope, lambda scope: self.crawl.continue_existing())
        if result is None:
            logger.info("nothing_to_resume")
        return result

    # -- orchestration -------------------------------------------------------

    async def _run(
        self,
        mode: SyncMode,
        scope: str,
        operation: Callable[[str], Awaitable[SyncResult | None]],
    ) -> SyncResult | None:
        if self.session.running:
            logger.info(
                "sync_already_running",
                requested=mode.value,
                active=self.session.mode.value if self.session.mode else None,
            )
            return SyncResult(status=SyncStatus.ALREADY_RUNNING, mode=mode, scope=scope)

        self.session.running = True
        self.session.mode = mode
        self.session.abort_requested = False
        with bind_sync_context(scope=scope, mode=mode.value):
            logger.info("sync_started")
            try:
                result = await operation(scope)
            except Exception as e:
                logger.error("sync_failed", error=str(e), type=type(e).__name__)
                notify(self.sink.on_error, ErrorEvent(message=str(e) or type(e).__name__))
                raise
            finally:
                self.session.reset()

            if result is not None:
                self._complete(result)
        return result

    def _complete(self, result: SyncResult) -> None:
        self.crawl.status("Sync complete", 100)
        notify(
            self.sink.on_complete,
            CompletionEvent(
                courses_count=len(result.courses),
                items_count=len(result.items),
                by_kind=count_by_kind(result.items),
            ),
        )
        logger.info(
            "sync_finished",
            result_mode=result.mode.value,
            courses=len(result.courses),
            items=len(result.items),
            changes=result.changes.model_dump() if result.changes else None,
        )

    async def _quick(
        self,
        scope: str,
        since: datetime | None = None,
        mode: SyncMode = SyncMode.QUICK,
    ) -> SyncResult:
        """Scrape what the current page shows; never navigates."""
        self.crawl.status("Finding your classes...", 5)
        courses = await self.crawl.extract_courses()
        self.crawl.status(f"Found {len(courses)} classes", PERCENT_COURSES_START)

        items: list[Item] = []
        results: list[CourseResult] = []
        for index, course in enumerate(courses):
            if self.session.abort_requested:
                raise SyncAbortedError()
            self.crawl.status(
                f"Syncing: {course.name} ({index + 1}/{len(courses)})",
                course_percent(index, len(courses)),
            )
            course_items, course_result = await scrape_course(self.page, self.extractor, course, since=since)
            items.extend(course_items)
            results.append(course_result)

        if self.session.abort_requested:
            raise SyncAbortedError()

        return await self.crawl.transmit(
            scope=scope,
            mode=mode,
            courses=courses,
            items=items,
            course_results=results,
            last_sync_time=since,
        )

    async def _incremental(self, scope: str) -> SyncResult:
        """Quick sync threaded with the last sync time.

        Falls back to a plain quick sync when the time cannot be obtained.
        """
        self.crawl.status("Checking last sync time...", 0)
        since = None
        try:
            snapshot = await self.backend.get_snapshot(scope)
            since = snapshot.last_updated
        except BackendError as e:
            logger.info("last_sync_unavailable", error=str(e))

        if since is None:
            logger.info("incremental_downgraded", reason="no_last_sync_time")
            return await self._quick(scope)

        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        logger.info("incremental_since", since=since.isoformat())
        return await self._quick(scope, since=since, mode=SyncMode.INCREMENTAL)
