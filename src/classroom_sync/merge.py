"""Merge and deduplication engine for scraped classroom records.

Compares freshly scraped items against previously stored ones and classifies
each incoming item as added, updated or unchanged. The same algorithm runs in
two places:

- client side, after a crawl and before transmission (``dedupe_items``), to
  collapse items scraped more than once;
- server side, on receipt of a payload (``merge_items``), against the
  durable snapshot of the scope.

Identity key: (course_id, id). When two records share a key, the one with
the later ``scraped_at`` wins no matter which arrived first; the winner keeps
the other record's description, markup and posted time when its own are
empty.
"""

import hashlib
from collections import Counter
from dataclasses import dataclass
from datetime import datetime

from classroom_sync.models import ChangeSummary, Course, Item, ItemKind


# ---------------------------------------------------------------------------
# Fingerprinting
# ---------------------------------------------------------------------------
def _format_due(due_at: datetime | None) -> str:
    return due_at.isoformat() if due_at is not None else ""


def _format_points(points: float | None) -> str:
    if points is None:
        return ""
    if float(points).is_integer():
        return str(int(points))
    return repr(float(points))


def fingerprint(item: Item) -> str:
    """Content hash over title, description, due date and max points.

    Submission state and posting time are left out on purpose: turning work
    in, or a posted label that drifts between scrapes, is not a content edit.
    """
    content = "|".join(
        [
            item.title,
            item.description or "",
            _format_due(item.due_at),
            _format_points(item.max_points),
        ]
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def content_changed(existing: Item, incoming: Item) -> bool:
    """True if the two records differ in content.

    Fingerprints are compared when both records carry one; otherwise the four
    fingerprinted fields are compared directly.
    """
    if existing.fingerprint and incoming.fingerprint:
        return existing.fingerprint != incoming.fingerprint
    return (
        existing.title != incoming.title
        or existing.description != incoming.description
        or existing.due_at != incoming.due_at
        or existing.max_points != incoming.max_points
    )


# ---------------------------------------------------------------------------
# Item merge
# ---------------------------------------------------------------------------
@dataclass
class ItemMerge:
    items: list[Item]
    changes: ChangeSummary


def _combine(winner: Item, other: Item) -> Item:
    # Extraction is sometimes partial; never let it erase known detail
    return winner.model_copy(
        update={
            "description": winner.description or other.description,
            "description_html": winner.description_html or other.description_html,
            "posted_at": winner.posted_at or other.posted_at,
        }
    )


def merge_items(existing: list[Item], incoming: list[Item]) -> ItemMerge:
    """Merge incoming items into existing ones.

    Args:
        existing: Items already known (snapshot items, or empty for dedup).
        incoming: Freshly scraped items, possibly with repeated keys.

    Returns:
        ItemMerge with the merged items (first-seen key order) and a
        ChangeSummary. The summary is informational only.
    """
    merged: dict[tuple[str, str], Item] = {item.key: item for item in existing}
    changes = ChangeSummary()

    for item in incoming:
        current = merged.get(item.key)
        if current is None:
            merged[item.key] = item
            changes.added += 1
            continue

        if item.scraped_at >= current.scraped_at:
            combined = _combine(item, current)
            merged[item.key] = combined
            # Judge the record that is stored, not the raw partial scrape
            if content_changed(current, combined):
                changes.updated += 1
            else:
                changes.unchanged += 1
        else:
            # Older scrape arriving late: the stored version stays
            merged[item.key] = _combine(current, item)
            changes.unchanged += 1

    return ItemMerge(items=list(merged.values()), changes=changes)


def dedupe_items(items: list[Item]) -> list[Item]:
    """Collapse repeated (course_id, id) keys, keeping the latest scrape."""
    return merge_items([], items).items


# ---------------------------------------------------------------------------
# Course merge
# ---------------------------------------------------------------------------
def merge_courses(existing: list[Course], incoming: list[Course]) -> list[Course]:
    """Overwrite courses by id, last write wins."""
    by_id: dict[str, Course] = {course.id: course for course in existing}
    for course in incoming:
        by_id[course.id] = course
    return list(by_id.values())


def count_by_kind(items: list[Item]) -> dict[str, int]:
    counts = Counter(item.kind.value for item in items)
    return {kind.value: counts.get(kind.value, 0) for kind in ItemKind}
