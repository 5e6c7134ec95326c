"""Status sink: where a sync reports progress, completion and errors.

Sinks are pure consumers. The controller never waits on them and never lets
a failing sink interrupt a sync (see ``notify``).
"""

from collections.abc import Callable
from typing import Protocol

from pydantic import BaseModel, Field

from classroom_sync.logging import get_logger

logger = get_logger(__name__)


class StatusEvent(BaseModel):
    message: str
    percent: float = Field(ge=0, le=100)
    detail: str = ""


class CompletionEvent(BaseModel):
    courses_count: int
    items_count: int
    by_kind: dict[str, int]


class ErrorEvent(BaseModel):
    message: str


class StatusSink(Protocol):
    def on_status(self, event: StatusEvent) -> None: ...

    def on_complete(self, event: CompletionEvent) -> None: ...

    def on_error(self, event: ErrorEvent) -> None: ...


class LoggingStatusSink:
    """Writes status events to the structured log."""

    def on_status(self, event: StatusEvent) -> None:
        logger.info("sync_status", message=event.message, percent=round(event.percent, 1), detail=event.detail or None)

    def on_complete(self, event: CompletionEvent) -> None:
        logger.info(
            "sync_complete",
            courses=event.courses_count,
            items=event.items_count,
            **event.by_kind,
        )

    def on_error(self, event: ErrorEvent) -> None:
        logger.error("sync_error", message=event.message)


def notify(callback: Callable[[BaseModel], None], event: BaseModel) -> None:
    """Deliver one event, fire-and-forget."""
    try:
        callback(event)
    except Exception as e:
        logger.warning("status_sink_failed", event_type=type(event).__name__, error=str(e))
