import base64
import unittest
from unittest.mock import Mock, patch

import requests

from vss.config import Settings
from vss.db import BackendError, InMemoryVssBackend
from vss.migration import (
    MigrationError,
    MigrationState,
    MigrationWorker,
    run_migration_task,
)

LEGACY_URL = "https://legacy.test/v2/migration"


def legacy_record(index, store_id=None, key=None, version=1):
    value = base64.b64encode(f"value-{index}".encode()).decode()
    return {
        "store_id": store_id or f"store-{index % 3}",
        "key": key or f"key-{index}",
        "value": value,
        "version": version,
        "created_date": "2023-09-23 03:05:18",
        "updated_date": None,
    }


def make_legacy_session(records):
    """Fake requests.Session serving ``records`` by limit/offset."""

    def post(url, json, headers, timeout):
        response = Mock()
        response.raise_for_status.return_value = None
        offset, limit = json["offset"], json["limit"]
        response.json.return_value = records[offset : offset + limit]
        return response

    session = Mock()
    session.post.side_effect = post
    return session


class MigrationWorkerTests(unittest.TestCase):
    def setUp(self):
        self.backend = InMemoryVssBackend()

    def stored_count(self):
        stores = ("store-0", "store-1", "store-2")
        return sum(len(self.backend.list_key_versions(store)) for store in stores)

    def test_pages_until_short_page(self):
        session = make_legacy_session([legacy_record(i) for i in range(250)])
        worker = MigrationWorker(
            self.backend, LEGACY_URL, "admin-secret", page_size=100, session=session
        )

        report = worker.run()

        self.assertEqual(session.post.call_count, 3)
        offsets = [c.kwargs["json"]["offset"] for c in session.post.call_args_list]
        self.assertEqual(offsets, [0, 100, 200])
        for c in session.post.call_args_list:
            self.assertEqual(c.args[0], LEGACY_URL)
            self.assertEqual(c.kwargs["json"]["limit"], 100)
            self.assertEqual(c.kwargs["headers"], {"x-api-key": "admin-secret"})
        self.assertEqual(worker.state, MigrationState.DONE)
        self.assertEqual(report.pages_fetched, 3)
        self.assertEqual(report.records_written, 250)
        self.assertEqual(self.stored_count(), 250)

        item = self.backend.get_item("store-1", "key-1")
        self.assertEqual(item.value, b"value-1")

    def test_repeated_keys_are_deduplicated(self):
        records = [legacy_record(i) for i in range(240)]
        records += [legacy_record(i, version=2) for i in range(10)]
        session = make_legacy_session(records)

        MigrationWorker(
            self.backend, LEGACY_URL, "k", page_size=100, session=session
        ).run()

        self.assertEqual(session.post.call_count, 3)
        self.assertEqual(self.stored_count(), 240)
        self.assertEqual(self.backend.get_item("store-0", "key-0").version, 2)

    def test_exact_multiple_needs_an_empty_page(self):
        session = make_legacy_session([legacy_record(i) for i in range(200)])
        report = MigrationWorker(
            self.backend, LEGACY_URL, "k", page_size=100, session=session
        ).run()
        self.assertEqual(session.post.call_count, 3)
        self.assertEqual(report.records_written, 200)

    def test_resumes_from_offset(self):
        session = make_legacy_session([legacy_record(i) for i in range(250)])
        report = MigrationWorker(
            self.backend, LEGACY_URL, "k", page_size=100, offset=200, session=session
        ).run()

        self.assertEqual(session.post.call_count, 1)
        self.assertEqual(session.post.call_args.kwargs["json"]["offset"], 200)
        self.assertEqual(report.records_written, 50)
        self.assertIsNone(self.backend.get_item("store-0", "key-0"))

    def test_undecodable_values_are_dropped(self):
        records = [legacy_record(i) for i in range(5)]
        records[2]["value"] = "%%% not base64 %%%"
        session = make_legacy_session(records)
        worker = MigrationWorker(self.backend, LEGACY_URL, "k", session=session)

        with self.assertLogs("vss.migration", level="WARNING") as logs:
            report = worker.run()

        self.assertEqual(report.records_written, 4)
        self.assertEqual(report.records_dropped, 1)
        self.assertIsNone(self.backend.get_item("store-2", "key-2"))
        self.assertTrue(any("Failed to decode" in line for line in logs.output))

    def test_missing_value_defaults_to_empty(self):
        record = legacy_record(0)
        del record["value"]
        session = make_legacy_session([record])
        MigrationWorker(self.backend, LEGACY_URL, "k", session=session).run()
        self.assertEqual(self.backend.get_item("store-0", "key-0").value, b"")

    def test_malformed_page_aborts(self):
        session = Mock()
        session.post.return_value.json.return_value = {"items": []}
        worker = MigrationWorker(self.backend, LEGACY_URL, "k", session=session)
        with self.assertRaises(MigrationError):
            worker.run()

    def test_http_error_aborts(self):
        session = Mock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError(
            "502 Bad Gateway"
        )
        worker = MigrationWorker(self.backend, LEGACY_URL, "k", session=session)
        with self.assertRaises(MigrationError):
            worker.run()
        self.assertEqual(worker.state, MigrationState.RUNNING)

    def test_backend_failure_aborts(self):
        backend = Mock()
        backend.put_items.side_effect = BackendError("connection reset")
        session = make_legacy_session([legacy_record(i) for i in range(3)])
        worker = MigrationWorker(backend, LEGACY_URL, "k", session=session)
        with self.assertRaises(BackendError):
            worker.run()

    def test_rejects_bad_page_size(self):
        with self.assertRaises(ValueError):
            MigrationWorker(self.backend, LEGACY_URL, "k", page_size=0, session=Mock())


class RunMigrationTaskTests(unittest.TestCase):
    def test_missing_url_is_logged(self):
        backend = InMemoryVssBackend()
        with self.assertLogs("vss.migration", level="ERROR") as logs:
            run_migration_task(backend, Settings(migration_url=None, admin_key="k"))
        self.assertTrue(any("MIGRATION_URL not set" in line for line in logs.output))

    @patch("vss.migration.requests.Session")
    def test_runs_with_settings(self, mock_session_cls):
        mock_session_cls.return_value = make_legacy_session(
            [legacy_record(i) for i in range(7)]
        )
        backend = InMemoryVssBackend()
        settings = Settings(
            migration_url=LEGACY_URL,
            admin_key="admin-secret",
            migration_batch_size=5,
            migration_start_index=0,
        )

        run_migration_task(backend, settings)

        session = mock_session_cls.return_value
        self.assertEqual(session.post.call_count, 2)
        self.assertEqual(
            session.post.call_args.kwargs["headers"], {"x-api-key": "admin-secret"}
        )
        self.assertIsNotNone(backend.get_item("store-0", "key-6"))

    @patch("vss.migration.requests.Session")
    def test_failures_are_logged_not_raised(self, mock_session_cls):
        mock_session_cls.return_value.post.side_effect = requests.ConnectionError(
            "unreachable"
        )
        settings = Settings(migration_url=LEGACY_URL, admin_key="k")
        with self.assertLogs("vss.migration", level="ERROR") as logs:
            run_migration_task(InMemoryVssBackend(), settings)
        self.assertTrue(any("Migration failed" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
