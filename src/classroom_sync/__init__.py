"""Incremental Google Classroom synchronization engine.

Crawls the student's classes with Playwright, checkpoints deep crawls so they
survive page reloads, and merges scraped items into per-scope snapshots using
content fingerprints.
"""

from classroom_sync.controller import SyncController
from classroom_sync.crawl import CrawlState, CrawlStateMachine, SessionState
from classroom_sync.merge import dedupe_items, fingerprint, merge_courses, merge_items
from classroom_sync.models import Course, CrawlProgress, Item, Snapshot, SyncMode, SyncResult

__all__ = [
    "SyncController",
    "CrawlStateMachine",
    "CrawlState",
    "SessionState",
    "fingerprint",
    "merge_items",
    "merge_courses",
    "dedupe_items",
    "Course",
    "Item",
    "CrawlProgress",
    "Snapshot",
    "SyncMode",
    "SyncResult",
]
