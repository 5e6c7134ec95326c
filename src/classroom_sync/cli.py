"""Command line entry point for classroom sync.

Sign in once:     classroom-sync login
Quick sync:       classroom-sync sync
Incremental:      classroom-sync sync --mode incremental
Deep sync:        classroom-sync sync --mode deep --scope 0
Resume a crawl:   classroom-sync resume
Drop a crawl:     classroom-sync abort
Run the backend:  classroom-sync serve --port 3000
Snapshot summary: classroom-sync status --scope 0

Exit codes:
  0 = success (JSON result on stdout)
  1 = error (message on stderr, structured error on stdout for sync commands)
"""

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from collections.abc import AsyncIterator

from dotenv import load_dotenv
from playwright.async_api import async_playwright

from classroom_sync.backend import SyncBackendClient
from classroom_sync.config import SyncConfig, get_config
from classroom_sync.controller import SyncController
from classroom_sync.coordinator import (
    CommandError,
    CommandRequest,
    CommandResponse,
    SyncCommand,
    handle_command,
    result_payload,
)
from classroom_sync.errors import SyncError
from classroom_sync.extractor import ClassroomExtractor
from classroom_sync.logging import get_logger, setup_logging
from classroom_sync.merge import count_by_kind
from classroom_sync.models import SyncMode
from classroom_sync.pages.classroom import ClassroomPage
from classroom_sync.progress import PROGRESS_KEY, FileProgressStore
from classroom_sync.server import serve
from classroom_sync.session import SessionManager
from classroom_sync.status import LoggingStatusSink
from classroom_sync.utils import configure_page_for_scraping

logger = get_logger(__name__)

COMMAND_BY_MODE = {
    SyncMode.QUICK: SyncCommand.RUN_QUICK_SYNC,
    SyncMode.INCREMENTAL: SyncCommand.RUN_INCREMENTAL_SYNC,
    SyncMode.DEEP: SyncCommand.RUN_DEEP_SYNC,
}


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _emit(body: dict) -> None:
    print(json.dumps(body, indent=2, ensure_ascii=False))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="classroom-sync",
        description="Synchronize Google Classroom courses and classwork to a sync backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Sign in interactively and save the browser session.")
    login.add_argument("--timeout", type=float, default=300, help="Seconds to wait for sign-in (default: 300).")

    sync = sub.add_parser("sync", help="Run a sync.")
    sync.add_argument(
        "--mode",
        type=str,
        choices=[mode.value for mode in SyncMode],
        default=SyncMode.QUICK.value,
        help="quick (current page), incremental (since last sync) or deep (every course).",
    )
    sync.add_argument("--scope", type=str, default=None, help="Snapshot scope (default: DEFAULT_SCOPE setting).")
    sync.add_argument("--url", type=str, default=None, help="Page to open first (default: Classroom home).")
    sync.add_argument("--headed", action="store_true", help="Launch browser in headed mode.")

    resume = sub.add_parser("resume", help="Resume an interrupted deep sync.")
    resume.add_argument("--headed", action="store_true", help="Launch browser in headed mode.")

    sub.add_parser("abort", help="Discard the checkpoint of an in-flight deep sync.")

    server = sub.add_parser("serve", help="Run the sync backend.")
    server.add_argument("--host", type=str, default=None)
    server.add_argument("--port", type=int, default=None)

    status = sub.add_parser("status", help="Show the backend snapshot for a scope.")
    status.add_argument("--scope", type=str, default=None)

    return parser.parse_args(argv)


@contextlib.asynccontextmanager
async def _classroom_page(config: SyncConfig, *, headed: bool) -> AsyncIterator[ClassroomPage]:
    """Browser, restored session and a configured Classroom tab."""
    sessions = SessionManager(config.state_dir, config.max_session_age_hours)
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=not headed)
        try:
            context = await sessions.create_context(browser)
            page = await context.new_page()
            await configure_page_for_scraping(page, timeout_ms=int(config.navigation_timeout_seconds * 1000))
            yield ClassroomPage(page, config)
            await sessions.save_session(context)
        finally:
            await browser.close()


def _build_controller(config: SyncConfig, page: ClassroomPage) -> SyncController:
    return SyncController(
        page,
        ClassroomExtractor(),
        SyncBackendClient(config.backend_url, timeout=config.request_timeout_seconds),
        FileProgressStore(config.state_dir),
        LoggingStatusSink(),
    )


def _abort_on_sigint(controller: SyncController) -> None:
    # First Ctrl-C aborts at the next course boundary, a second one kills
    loop = asyncio.get_running_loop()

    def _handle() -> None:
        controller.abort()
        loop.remove_signal_handler(signal.SIGINT)

    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, _handle)


async def _login(config: SyncConfig, timeout: float) -> int:
    sessions = SessionManager(config.state_dir, config.max_session_age_hours)
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=False)
        try:
            context = await browser.new_context()
            page = await context.new_page()
            await sessions.wait_for_sign_in(page, config.home_url, timeout)
            await sessions.save_session(context)
        finally:
            await browser.close()
    _log(f"Session saved to {sessions.state_file}")
    return 0


async def _sync(config: SyncConfig, args: argparse.Namespace) -> int:
    scope = args.scope or config.default_scope
    async with _classroom_page(config, headed=args.headed) as page:
        await page.goto(args.url or config.home_url)
        SessionManager(config.state_dir, config.max_session_age_hours).ensure_signed_in(page.page)

        controller = _build_controller(config, page)
        _abort_on_sigint(controller)
        request = CommandRequest(type=COMMAND_BY_MODE[SyncMode(args.mode)], scope=scope)
        response = await handle_command(controller, request)

    _emit(response.model_dump(mode="json"))
    if not response.success:
        _log(f"Sync failed: {response.error.message}")
        return 1
    return 0


async def _resume(config: SyncConfig, headed: bool) -> int:
    progress = FileProgressStore(config.state_dir).get(PROGRESS_KEY)
    if progress is None or progress.current_course is None:
        _log("No deep sync to resume.")
        return 0

    async with _classroom_page(config, headed=headed) as page:
        controller = _build_controller(config, page)
        _abort_on_sigint(controller)
        # Land on the checkpointed course, as a reload would have
        await page.open_course(progress.current_course)
        try:
            result = await controller.initialize()
        except SyncError as e:
            response = CommandResponse(success=False, error=CommandError(message=str(e)))
        else:
            response = CommandResponse(success=True, data=result_payload(result) if result else None)

    _emit(response.model_dump(mode="json"))
    return 0 if response.success else 1


def _status(config: SyncConfig, scope: str | None) -> int:
    client = SyncBackendClient(config.backend_url, timeout=config.request_timeout_seconds)
    try:
        snapshot = asyncio.run(client.get_snapshot(scope or config.default_scope))
    except SyncError as e:
        _log(f"Error: {e}")
        return 1
    _emit(
        {
            "scope": snapshot.scope,
            "courses": len(snapshot.courses),
            "items": len(snapshot.items),
            "byKind": count_by_kind(snapshot.items),
            "lastUpdated": snapshot.last_updated.isoformat() if snapshot.last_updated else None,
            "lastFullSync": snapshot.last_full_sync.isoformat() if snapshot.last_full_sync else None,
            "syncStats": snapshot.sync_stats.model_dump(mode="json"),
        }
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _parse_args(argv)
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    try:
        if args.command == "login":
            return asyncio.run(_login(config, args.timeout))
        if args.command == "sync":
            return asyncio.run(_sync(config, args))
        if args.command == "resume":
            return asyncio.run(_resume(config, args.headed))
        if args.command == "abort":
            FileProgressStore(config.state_dir).delete(PROGRESS_KEY)
            _log("Deep sync checkpoint discarded.")
            return 0
        if args.command == "serve":
            serve(
                config.snapshot_dir,
                args.host or config.server_host,
                args.port or config.server_port,
                config.default_scope,
            )
            return 0
        if args.command == "status":
            return _status(config, args.scope)
    except SyncError as e:
        _log(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        _log("Interrupted.")
        return 1
    return 1
