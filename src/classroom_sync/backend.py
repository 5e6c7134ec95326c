"""HTTP client for the sync backend.

GET /sync?scope=S   -> Snapshot
POST /sync          -> SyncResponse (the server merges against its snapshot)

Every call carries the configured timeout. Nothing is retried here: a failed
POST is fatal to the sync attempt and the caller decides whether to re-run.
"""

import asyncio
from typing import Protocol

import requests
from pydantic import ValidationError

from classroom_sync.errors import BackendError, TransmissionError
from classroom_sync.logging import get_logger
from classroom_sync.models import Snapshot, SyncPayload, SyncResponse

logger = get_logger(__name__)


class SyncBackend(Protocol):
    async def get_snapshot(self, scope: str) -> Snapshot: ...

    async def post_sync(self, payload: SyncPayload) -> SyncResponse: ...


class SyncBackendClient:
    """Blocking requests calls, pushed off the event loop with to_thread."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def sync_url(self) -> str:
        return f"{self.base_url}/sync"

    def _get_snapshot(self, scope: str) -> Snapshot:
        try:
            resp = self.session.get(self.sync_url, params={"scope": scope}, timeout=self.timeout)
        except requests.RequestException as e:
            raise BackendError(f"Snapshot lookup failed: {e}") from e
        if resp.status_code != 200:
            raise BackendError(f"Snapshot lookup failed: HTTP {resp.status_code}")
        try:
            return Snapshot.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise BackendError(f"Snapshot lookup returned invalid data: {e}") from e

    def _post_sync(self, payload: SyncPayload) -> SyncResponse:
        try:
            resp = self.session.post(
                self.sync_url,
                json=payload.model_dump(mode="json"),
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise TransmissionError(f"Sending sync payload timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TransmissionError(f"Sending sync payload failed: {e}") from e
        if resp.status_code != 200:
            raise TransmissionError(f"Sending sync payload failed: HTTP {resp.status_code} {resp.text[:200]}")
        try:
            return SyncResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise TransmissionError(f"Backend returned an invalid sync response: {e}") from e

    async def get_snapshot(self, scope: str) -> Snapshot:
        snapshot = await asyncio.to_thread(self._get_snapshot, scope)
        logger.debug("snapshot_fetched", scope=scope, items=len(snapshot.items))
        return snapshot

    async def post_sync(self, payload: SyncPayload) -> SyncResponse:
        logger.info(
            "payload_sending",
            url=self.sync_url,
            courses=len(payload.courses),
            items=len(payload.items),
        )
        response = await asyncio.to_thread(self._post_sync, payload)
        logger.info("payload_sent", changes=response.changes.model_dump())
        return response
