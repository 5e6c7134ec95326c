import tempfile
import threading
import unittest

import requests

from classroom_sync.backend import SyncBackendClient
from classroom_sync.errors import BackendError, PayloadError, TransmissionError
from classroom_sync.models import ItemKind, SyncMode, SyncPayload
from classroom_sync.server import SnapshotStore, SyncService, make_server

from tests.fakes import T0, at, make_course, make_item


def payload(mode=SyncMode.QUICK, scope="0", items=None, last_updated=None):
    return SyncPayload(
        scope=scope,
        courses=[make_course("A")],
        items=items if items is not None else [make_item("A", "a1"), make_item("A", "m1", kind=ItemKind.MATERIAL)],
        last_updated=last_updated or at(30),
        mode=mode,
    )


class ServiceTestCase(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.store = SnapshotStore(tmp.name)
        self.service = SyncService(self.store)


class SyncServiceTest(ServiceTestCase):
    def test_first_sync_adds_everything(self):
        response = self.service.receive(payload())

        self.assertEqual(response.changes.added, 2)
        self.assertEqual(response.counts.items, 2)
        self.assertEqual(response.counts.assignments, 1)
        self.assertEqual(response.counts.materials, 1)
        snapshot = self.store.get("0")
        self.assertEqual(snapshot.last_updated, at(30))
        self.assertEqual(snapshot.last_full_sync, at(30))
        self.assertEqual(snapshot.sync_stats.total_syncs, 1)
        self.assertIs(snapshot.sync_stats.last_sync_mode, SyncMode.QUICK)

    def test_incremental_sync_leaves_last_full_sync(self):
        self.service.receive(payload())
        self.service.receive(payload(mode=SyncMode.INCREMENTAL, last_updated=at(60)))

        snapshot = self.store.get("0")
        self.assertEqual(snapshot.last_updated, at(60))
        self.assertEqual(snapshot.last_full_sync, at(30))
        self.assertEqual(snapshot.sync_stats.total_syncs, 2)

    def test_last_updated_never_moves_backwards(self):
        self.service.receive(payload(last_updated=at(30)))
        self.service.receive(payload(mode=SyncMode.INCREMENTAL, last_updated=at(10)))
        self.assertEqual(self.store.get("0").last_updated, at(30))

    def test_edit_is_reported_as_update(self):
        self.service.receive(payload(items=[make_item("A", "a1", title="Essay", scraped_at=T0)]))
        response = self.service.receive(
            payload(items=[make_item("A", "a1", title="Essay v2", scraped_at=at(5))], last_updated=at(40))
        )

        self.assertEqual((response.changes.added, response.changes.updated, response.changes.unchanged), (0, 1, 0))
        self.assertEqual(self.store.get("0").items[0].title, "Essay v2")
        self.assertEqual(self.store.get("0").sync_stats.last_sync_items_updated, 1)

    def test_missing_last_updated_is_rejected(self):
        bad = payload().model_copy(update={"last_updated": None})
        with self.assertRaises(PayloadError):
            self.service.receive(bad)
        self.assertEqual(self.store.scopes(), [])

    def test_blank_scope_means_global(self):
        self.service.receive(payload(scope="  "))
        self.assertTrue(self.store.exists("global"))

    def test_missing_scope_means_default_scope(self):
        body = payload().model_dump(mode="json")
        del body["scope"]

        response = self.service.receive(SyncPayload.model_validate(body))

        self.assertEqual(response.scope, "global")
        self.assertEqual(len(self.store.get("global").items), 2)

    def test_default_scope_is_configurable(self):
        service = SyncService(self.store, default_scope="school")
        service.receive(payload(scope=""))
        self.assertEqual(self.store.scopes(), ["school"])
        self.assertEqual(service.snapshot().scope, "school")

    def test_scope_locks_are_released_after_use(self):
        self.service.receive(payload(scope="0"))
        self.service.receive(payload(scope="1"))
        self.service.remove("0")
        self.assertEqual(self.service._locks, {})

    def test_scopes_are_isolated(self):
        self.service.receive(payload(scope="0"))
        self.service.receive(payload(scope="1", items=[]))

        self.assertEqual(len(self.store.get("0").items), 2)
        self.assertEqual(self.store.get("1").items, [])
        self.assertEqual(self.store.scopes(), ["0", "1"])

    def test_scope_names_survive_the_filesystem(self):
        self.service.receive(payload(scope="school/year 11"))
        self.assertEqual(self.store.scopes(), ["school/year 11"])

    def test_snapshot_without_scope_is_latest(self):
        self.assertEqual(self.service.snapshot().scope, "global")
        self.service.receive(payload(scope="old", last_updated=at(10)))
        self.service.receive(payload(scope="new", last_updated=at(20)))
        self.assertEqual(self.service.snapshot().scope, "new")

    def test_remove(self):
        self.service.receive(payload())
        self.assertTrue(self.service.remove("0"))
        self.assertFalse(self.service.remove("0"))
        self.assertEqual(self.store.get("0").items, [])


class SyncHttpTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.service = SyncService(SnapshotStore(tmp.name))
        server = make_server(self.service, "127.0.0.1", 0)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        self.addCleanup(server.server_close)
        self.addCleanup(server.shutdown)
        self.base_url = f"http://127.0.0.1:{server.server_address[1]}"
        self.client = SyncBackendClient(self.base_url, timeout=5)

    async def test_post_then_get_snapshot(self):
        response = await self.client.post_sync(payload())
        self.assertEqual(response.changes.added, 2)

        snapshot = await self.client.get_snapshot("0")
        self.assertEqual(snapshot.scope, "0")
        self.assertEqual([item.key for item in snapshot.items], [("A", "a1"), ("A", "m1")])
        self.assertEqual(snapshot.last_updated, at(30))

    async def test_unknown_scope_is_empty(self):
        snapshot = await self.client.get_snapshot("never-synced")
        self.assertEqual(snapshot.items, [])
        self.assertIsNone(snapshot.last_updated)

    async def test_rejected_payload_is_a_transmission_error(self):
        with self.assertRaises(TransmissionError):
            await self.client.post_sync(payload().model_copy(update={"last_updated": None}))

    async def test_failed_lookup_is_a_backend_error(self):
        client = SyncBackendClient(f"{self.base_url}/missing", timeout=5)
        with self.assertRaises(BackendError):
            await client.get_snapshot("0")

    def test_malformed_body(self):
        resp = requests.post(f"{self.base_url}/sync", json={"scope": "0"}, timeout=5)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "Invalid payload")

    def test_post_without_scope(self):
        body = payload().model_dump(mode="json")
        del body["scope"]

        resp = requests.post(f"{self.base_url}/sync", json=body, timeout=5)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["scope"], "global")

    def test_delete_scope(self):
        self.service.receive(payload())
        resp = requests.delete(f"{self.base_url}/sync", params={"scope": "0"}, timeout=5)
        self.assertEqual(resp.json(), {"scope": "0", "deleted": True})
        self.assertEqual(requests.delete(f"{self.base_url}/sync", timeout=5).status_code, 400)

    def test_health_and_cors(self):
        self.assertEqual(requests.get(f"{self.base_url}/health", timeout=5).text, "ok")
        resp = requests.options(f"{self.base_url}/sync", timeout=5)
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")
        self.assertEqual(requests.get(f"{self.base_url}/elsewhere", timeout=5).status_code, 404)


if __name__ == "__main__":
    unittest.main()
