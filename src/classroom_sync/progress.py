"""Durable crawl-progress storage.

A deep sync writes its CrawlProgress here before every navigation and reads
it back on every page load, so the record outlives any single page (or
process). Records are plain JSON files under the configured state directory.
"""

import os
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from classroom_sync.logging import get_logger
from classroom_sync.models import CrawlProgress

logger = get_logger(__name__)

PROGRESS_KEY = "classroom_sync_state"


class ProgressStore(Protocol):
    def get(self, key: str) -> CrawlProgress | None: ...

    def put(self, key: str, progress: CrawlProgress) -> None: ...

    def delete(self, key: str) -> None: ...


class FileProgressStore:
    """Stores one CrawlProgress per key as ``<state_dir>/<key>.json``."""

    def __init__(self, state_dir: str = "data/state") -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def get(self, key: str) -> CrawlProgress | None:
        """Load progress for a key.

        A missing file means no crawl is in progress. An unreadable file is
        treated the same way: it is stale, and a fresh sync may replace it.
        """
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return CrawlProgress.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.warning("progress_unreadable", path=str(path), error=str(e))
            return None

    def put(self, key: str, progress: CrawlProgress) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(progress.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug(
            "progress_saved",
            key=key,
            current_index=progress.current_index,
            courses=len(progress.courses),
            items=len(progress.accumulated_items),
        )

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
            logger.info("progress_cleared", key=key)
        else:
            logger.debug("progress_clear_skipped", key=key, reason="file_not_found")
