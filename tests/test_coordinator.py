import tempfile
import unittest
from types import SimpleNamespace
from unittest import mock

from classroom_sync.controller import SyncController
from classroom_sync.coordinator import CommandRequest, SyncCommand, handle_command
from classroom_sync.progress import FileProgressStore

from tests.fakes import FakeBackend, FakeExtractor, FakePage, RecordingSink, at, make_course, make_item


class ExplodingBackend(FakeBackend):
    async def post_sync(self, payload):
        raise RuntimeError("socket closed")


class HandleCommandTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.store = FileProgressStore(tmp.name)
        self.extractor = FakeExtractor([make_course("A")], {"A": [make_item("A", "a1")]})

    def controller(self, backend=None) -> SyncController:
        return SyncController(
            FakePage(),
            self.extractor,
            backend or FakeBackend(),
            self.store,
            RecordingSink(),
            clock=lambda: at(30),
        )

    async def test_success_payload(self):
        response = await handle_command(self.controller(), CommandRequest(type=SyncCommand.RUN_QUICK_SYNC))

        self.assertTrue(response.success)
        self.assertIsNone(response.error)
        data = response.data
        self.assertEqual(data["mode"], "quick")
        self.assertEqual(data["scope"], "global")
        self.assertEqual(data["lastUpdated"], "2026-03-02T09:30:00Z")
        self.assertEqual([item["id"] for item in data["items"]], ["a1"])
        self.assertEqual(data["courseResults"][0]["course_id"], "A")
        self.assertEqual(data["changes"]["added"], 1)

    async def test_request_scope_defaults_to_configured_scope(self):
        config = SimpleNamespace(default_scope="school")
        with mock.patch("classroom_sync.coordinator.get_config", return_value=config):
            request = CommandRequest(type=SyncCommand.RUN_QUICK_SYNC)
        self.assertEqual(request.scope, "school")
        self.assertEqual(CommandRequest(type=SyncCommand.RUN_QUICK_SYNC, scope="0").scope, "0")

    async def test_request_from_wire(self):
        request = CommandRequest.model_validate({"type": "RunDeepSync", "scope": "0"})
        response = await handle_command(self.controller(), request)
        self.assertTrue(response.success)
        self.assertEqual(response.data["mode"], "deep")
        self.assertEqual(response.data["scope"], "0")

    async def test_sync_error_becomes_structured_error(self):
        self.extractor.courses = []

        response = await handle_command(self.controller(), CommandRequest(type=SyncCommand.RUN_INCREMENTAL_SYNC))

        self.assertFalse(response.success)
        self.assertIsNone(response.data)
        self.assertEqual(response.error.message, "No courses found. Make sure you are enrolled in classes.")

    async def test_unexpected_error_is_contained(self):
        response = await handle_command(
            self.controller(ExplodingBackend()), CommandRequest(type=SyncCommand.RUN_QUICK_SYNC)
        )
        self.assertFalse(response.success)
        self.assertEqual(response.error.message, "socket closed")


if __name__ == "__main__":
    unittest.main()
