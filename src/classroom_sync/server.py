"""Sync backend: per-scope snapshots and the /sync HTTP endpoint.

GET    /sync?scope=S  -> Snapshot (latest-updated scope when S is omitted)
POST   /sync          -> merge SyncPayload into the scope's snapshot, SyncResponse
DELETE /sync?scope=S  -> remove the scope's snapshot
GET    /health        -> "ok"

Snapshots are stored as data/snapshots/{scope}.json. Each POST is a
read-merge-write against that file, serialized per scope by a lock.
"""

import json
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, quote, unquote, urlparse

from pydantic import ValidationError

from classroom_sync.config import DEFAULT_SCOPE
from classroom_sync.errors import PayloadError
from classroom_sync.logging import get_logger
from classroom_sync.merge import count_by_kind, merge_courses, merge_items
from classroom_sync.models import (
    Snapshot,
    SyncCounts,
    SyncMode,
    SyncPayload,
    SyncResponse,
)

logger = get_logger(__name__)

# Modes that scrape every course the page lists
FULL_SYNC_MODES = frozenset({SyncMode.QUICK, SyncMode.DEEP})


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Snapshot storage
# ---------------------------------------------------------------------------
class SnapshotStore:
    """One JSON file per scope, replaced atomically on every write."""

    def __init__(self, snapshot_dir: str = "data/snapshots") -> None:
        self.snapshot_dir = Path(snapshot_dir)
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, scope: str) -> Path:
        return self.snapshot_dir / f"{quote(scope, safe='')}.json"

    def exists(self, scope: str) -> bool:
        return self._path(scope).exists()

    def get(self, scope: str) -> Snapshot:
        """Load a scope's snapshot, or an empty one if it was never synced."""
        path = self._path(scope)
        if not path.exists():
            return Snapshot(scope=scope)
        return Snapshot.model_validate_json(path.read_text(encoding="utf-8"))

    def put(self, snapshot: Snapshot) -> Path:
        path = self._path(snapshot.scope)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)
        return path

    def delete(self, scope: str) -> bool:
        path = self._path(scope)
        if not path.exists():
            return False
        path.unlink()
        logger.info("snapshot_deleted", scope=scope)
        return True

    def scopes(self) -> list[str]:
        return sorted(unquote(path.stem) for path in self.snapshot_dir.glob("*.json"))

    def latest(self) -> Snapshot | None:
        """The most recently updated snapshot across all scopes."""
        snapshots = [self.get(scope) for scope in self.scopes()]
        if not snapshots:
            return None
        floor = datetime.min.replace(tzinfo=timezone.utc)
        return max(snapshots, key=lambda s: _as_utc(s.last_updated) or floor)


# ---------------------------------------------------------------------------
# Merge-on-receive
# ---------------------------------------------------------------------------
class SyncService:
    """Server half of the merge: applies payloads to per-scope snapshots."""

    def __init__(self, store: SnapshotStore, default_scope: str = DEFAULT_SCOPE) -> None:
        self.store = store
        self.default_scope = default_scope
        # scope -> [lock, number of requests holding or waiting for it]
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _lock(self, scope: str) -> Iterator[None]:
        """Serialize work on one scope; the entry is dropped once unused."""
        with self._locks_guard:
            entry = self._locks.setdefault(scope, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[scope]

    def snapshot(self, scope: str | None = None) -> Snapshot:
        if scope:
            return self.store.get(scope)
        return self.store.latest() or Snapshot(scope=self.default_scope)

    def receive(self, payload: SyncPayload) -> SyncResponse:
        """Merge a payload into its scope's snapshot and persist the result.

        Raises:
            PayloadError: If the payload has no last_updated timestamp.
        """
        if payload.last_updated is None:
            raise PayloadError("Invalid data format: missing last_updated")

        scope = payload.scope.strip() or self.default_scope
        received_at = _as_utc(payload.last_updated)

        with self._lock(scope):
            existing = self.store.get(scope)
            courses = merge_courses(existing.courses, payload.courses)
            merged = merge_items(existing.items, payload.items)

            stats = existing.sync_stats.model_copy(
                update={
                    "total_syncs": existing.sync_stats.total_syncs + 1,
                    "last_sync_mode": payload.mode,
                    "last_sync_items_added": merged.changes.added,
                    "last_sync_items_updated": merged.changes.updated,
                }
            )
            previous = _as_utc(existing.last_updated)
            last_updated = max(received_at, previous) if previous else received_at
            last_full_sync = existing.last_full_sync
            if payload.mode in FULL_SYNC_MODES:
                last_full_sync = received_at

            snapshot = Snapshot(
                scope=scope,
                courses=courses,
                items=merged.items,
                last_updated=last_updated,
                last_full_sync=last_full_sync,
                sync_stats=stats,
            )
            self.store.put(snapshot)

        by_kind = count_by_kind(snapshot.items)
        logger.info(
            "snapshot_merged",
            scope=scope,
            mode=payload.mode.value,
            courses=len(courses),
            items=len(snapshot.items),
            changes=merged.changes.model_dump(),
        )
        return SyncResponse(
            scope=scope,
            mode=payload.mode,
            counts=SyncCounts(
                courses=len(courses),
                items=len(snapshot.items),
                assignments=by_kind["assignment"],
                materials=by_kind["material"],
                announcements=by_kind["announcement"],
            ),
            changes=merged.changes,
            last_updated=snapshot.last_updated,
        )

    def remove(self, scope: str) -> bool:
        with self._lock(scope):
            return self.store.delete(scope)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
class SyncRequestHandler(BaseHTTPRequestHandler):
    service: SyncService

    def _send_json(self, code: int, body: dict) -> None:
        encoded = json.dumps(body).encode()
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(encoded)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(encoded)

    def _route(self) -> tuple[str, dict[str, str]]:
        parsed = urlparse(self.path)
        params = {key: values[0].strip() for key, values in parse_qs(parsed.query).items()}
        return parsed.path.rstrip("/") or "/", params

    def do_OPTIONS(self):
        self.send_response(200)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.end_headers()

    def do_GET(self):
        path, params = self._route()
        if path == "/health":
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.end_headers()
            self.wfile.write(b"ok")
            return
        if path != "/sync":
            self._send_json(404, {"message": "Not found"})
            return

        try:
            snapshot = self.service.snapshot(params.get("scope") or None)
        except Exception as e:
            logger.exception("snapshot_read_failed")
            self._send_json(500, {"message": "Failed to read snapshot", "error": str(e)})
            return
        self._send_json(200, snapshot.model_dump(mode="json"))

    def do_POST(self):
        path, _ = self._route()
        if path != "/sync":
            self._send_json(404, {"message": "Not found"})
            return

        content_length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(content_length)
        try:
            payload = SyncPayload.model_validate_json(body)
            response = self.service.receive(payload)
        except (ValidationError, PayloadError) as e:
            self._send_json(400, {"message": "Invalid payload", "error": str(e)})
            return
        except Exception as e:
            logger.exception("sync_receive_failed")
            self._send_json(500, {"message": "Failed to sync classroom data", "error": str(e)})
            return
        self._send_json(200, response.model_dump(mode="json"))

    def do_DELETE(self):
        path, params = self._route()
        if path != "/sync":
            self._send_json(404, {"message": "Not found"})
            return
        scope = params.get("scope")
        if not scope:
            self._send_json(400, {"message": "scope is required"})
            return
        self._send_json(200, {"scope": scope, "deleted": self.service.remove(scope)})

    def log_message(self, format, *args):
        logger.debug("http_request", client=self.client_address[0], request=format % args)


def make_server(service: SyncService, host: str = "127.0.0.1", port: int = 3000) -> ThreadingHTTPServer:
    handler = type("BoundSyncRequestHandler", (SyncRequestHandler,), {"service": service})
    return ThreadingHTTPServer((host, port), handler)


def serve(snapshot_dir: str, host: str, port: int, default_scope: str = DEFAULT_SCOPE) -> None:
    server = make_server(SyncService(SnapshotStore(snapshot_dir), default_scope), host, port)
    logger.info("sync_server_listening", host=host, port=server.server_address[1], snapshot_dir=snapshot_dir)
    try:
        server.serve_forever()
    finally:
        server.server_close()
