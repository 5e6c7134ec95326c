"""Request/response commands exposed to a host process.

A host (CLI, scheduler, another service) sends one of three commands and gets
back either a success payload or a structured error. Errors never escape as
exceptions.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from classroom_sync.config import get_config
from classroom_sync.controller import SyncController
from classroom_sync.errors import SyncError
from classroom_sync.logging import get_logger
from classroom_sync.models import SyncResult

logger = get_logger(__name__)


class SyncCommand(str, Enum):
    RUN_QUICK_SYNC = "RunQuickSync"
    RUN_INCREMENTAL_SYNC = "RunIncrementalSync"
    RUN_DEEP_SYNC = "RunDeepSync"


class CommandRequest(BaseModel):
    type: SyncCommand
    scope: str = Field(default_factory=lambda: get_config().default_scope)


class CommandError(BaseModel):
    message: str


class CommandResponse(BaseModel):
    success: bool
    data: dict[str, Any] | None = None
    error: CommandError | None = None


def result_payload(result: SyncResult) -> dict[str, Any]:
    """Success payload: {courses, items, mode, lastUpdated, ...}."""
    data = result.model_dump(mode="json")
    return {
        "status": data["status"],
        "scope": data["scope"],
        "mode": data["mode"],
        "courses": data["courses"],
        "items": data["items"],
        "lastUpdated": data["last_updated"],
        "courseResults": data["course_results"],
        "changes": data["changes"],
    }


async def handle_command(controller: SyncController, request: CommandRequest) -> CommandResponse:
    runners = {
        SyncCommand.RUN_QUICK_SYNC: controller.run_quick_sync,
        SyncCommand.RUN_INCREMENTAL_SYNC: controller.run_incremental_sync,
        SyncCommand.RUN_DEEP_SYNC: controller.run_deep_sync,
    }
    logger.info("command_received", command=request.type.value, scope=request.scope)
    try:
        result = await runners[request.type](request.scope)
    except SyncError as e:
        return CommandResponse(success=False, error=CommandError(message=str(e)))
    except Exception as e:
        logger.exception("command_failed", command=request.type.value)
        return CommandResponse(success=False, error=CommandError(message=str(e) or type(e).__name__))
    return CommandResponse(success=True, data=result_payload(result))
