"""Pydantic models for classroom sync data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Wire payloads are produced with ``model_dump(mode="json")`` so timestamps travel
as ISO-8601 strings.
"""

from datetime import datetime
from enum import Enum

from pydantic import AwareDatetime, BaseModel, Field


class ItemKind(str, Enum):
    ASSIGNMENT = "assignment"
    MATERIAL = "material"
    ANNOUNCEMENT = "announcement"


class SubmissionState(str, Enum):
    NEW = "NEW"
    ASSIGNED = "ASSIGNED"
    TURNED_IN = "TURNED_IN"
    RETURNED = "RETURNED"
    MISSING = "MISSING"
    LATE = "LATE"


class SyncMode(str, Enum):
    QUICK = "quick"  # current page only, no navigation
    INCREMENTAL = "incremental"  # quick, threaded with the last sync time
    DEEP = "deep"  # navigates every course, survives reloads


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    ALREADY_RUNNING = "already_running"


class CourseLinks(BaseModel):
    main: str  # stream page, /c/<id>
    items_listing: str  # classwork page, /w/<id>/t/all


class Course(BaseModel):
    """A class the student is enrolled in, as listed on the Classroom home page."""

    id: str  # site-assigned, stable
    name: str
    section: str | None = None
    teacher: str | None = None
    links: CourseLinks


class Item(BaseModel):
    """An assignment, material or announcement scraped from a course page.

    Identity is the pair (course_id, id): two courses may reuse the same
    item id, so nothing keys on ``id`` alone.
    """

    id: str
    course_id: str
    course_name: str
    kind: ItemKind
    title: str
    description: str = ""
    description_html: str = ""  # card markup, kept for display only
    due_at: datetime | None = None
    due_text: str = ""  # raw label, e.g. "Due tomorrow"
    max_points: float | None = None
    submission_state: SubmissionState = SubmissionState.NEW
    link: str = ""
    posted_at: datetime | None = None
    scraped_at: AwareDatetime  # wall-clock time of extraction
    fingerprint: str | None = None  # see merge.fingerprint

    @property
    def key(self) -> tuple[str, str]:
        return (self.course_id, self.id)


class CourseResult(BaseModel):
    """Outcome of extracting one course during a sync."""

    course_id: str
    course_name: str
    item_count: int = 0
    success: bool = True
    error: str | None = None


class CrawlProgress(BaseModel):
    """Durable checkpoint of an in-flight deep sync.

    Written before every navigation and read back on every page load; its
    presence is what "deep sync in progress" means.
    """

    scope: str
    courses: list[Course]
    current_index: int = 0
    accumulated_items: list[Item] = Field(default_factory=list)
    course_results: list[CourseResult] = Field(default_factory=list)
    started_at: datetime
    last_sync_time: datetime | None = None
    mode: SyncMode = SyncMode.DEEP

    @property
    def current_course(self) -> Course | None:
        if 0 <= self.current_index < len(self.courses):
            return self.courses[self.current_index]
        return None


class SyncStats(BaseModel):
    total_syncs: int = 0
    last_sync_mode: SyncMode | None = None
    last_sync_items_added: int = 0
    last_sync_items_updated: int = 0


class Snapshot(BaseModel):
    """Latest known-good courses and items for one scope."""

    scope: str
    courses: list[Course] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)
    last_updated: datetime | None = None
    last_full_sync: datetime | None = None
    sync_stats: SyncStats = Field(default_factory=SyncStats)


class SyncPayload(BaseModel):
    """What the client transmits to ``POST /sync`` after a sync."""

    scope: str = ""  # blank or missing: the server's default scope
    courses: list[Course]
    items: list[Item]
    last_updated: datetime | None
    mode: SyncMode
    last_sync_time: datetime | None = None
    sync_results: list[CourseResult] = Field(default_factory=list)


class ChangeSummary(BaseModel):
    added: int = 0
    updated: int = 0
    unchanged: int = 0


class SyncCounts(BaseModel):
    courses: int = 0
    items: int = 0
    assignments: int = 0
    materials: int = 0
    announcements: int = 0


class SyncResponse(BaseModel):
    """Backend answer to ``POST /sync``."""

    scope: str
    mode: SyncMode
    counts: SyncCounts
    changes: ChangeSummary
    last_updated: datetime | None = None


class SyncResult(BaseModel):
    """What a sync run hands back to its caller."""

    status: SyncStatus = SyncStatus.COMPLETED
    mode: SyncMode
    scope: str
    courses: list[Course] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)
    last_updated: datetime | None = None
    course_results: list[CourseResult] = Field(default_factory=list)
    changes: ChangeSummary | None = None

    @property
    def already_running(self) -> bool:
        return self.status is SyncStatus.ALREADY_RUNNING
