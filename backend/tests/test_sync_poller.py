"""
Sync Poller Tests
"""

import threading

import pytest

from hivis.services import intake_service, sync_poller
from hivis.services.intake_sources import SOURCE_S3
from hivis.services.sync_poller import SyncPoller


def _record(n):
    return {
        "transactionId": f"S{n}",
        "machineId": "M9",
        "amount": 250,
        "product": "Water",
        "date": "2026-03-10T09:00:00Z",
    }


@pytest.fixture
def registered(app):
    created = []

    def _register(poller):
        created.append(poller)
        return sync_poller.register_poller(app, poller)

    yield _register

    for poller in created:
        poller.stop()
    app.extensions.get(sync_poller.POLLERS_EXTENSION_KEY, {}).clear()


class TestRunOnce:
    def test_ingests_fetched_records(self, app, db_session):
        poller = SyncPoller(app, lambda: [_record(1), _record(2)], SOURCE_S3, interval=60)

        summary = poller.run_once()

        assert summary["processed"] == 2
        assert poller.runs == 1
        assert poller.ingested == 2
        assert poller.last_error is None
        assert intake_service.get_by_external_id("S2").source == SOURCE_S3

    def test_repeated_fetch_is_idempotent(self, app, db_session):
        poller = SyncPoller(app, lambda: [_record(1)], SOURCE_S3, interval=60)
        poller.run_once()
        summary = poller.run_once()
        assert summary["duplicates"] == 1
        assert poller.ingested == 1

    def test_fetch_failure_is_recorded(self, app, db_session):
        def fetch():
            raise ConnectionError("bucket unreachable")

        poller = SyncPoller(app, fetch, SOURCE_S3, interval=60)
        summary = poller.run_once()

        assert summary["processed"] == 0
        assert "bucket unreachable" in poller.last_error
        assert poller.status()["runs"] == 1

    def test_interval_defaults_from_config(self, app):
        poller = SyncPoller(app, list, SOURCE_S3)
        assert poller.interval_seconds == float(app.config["SYNC_POLL_INTERVAL_SECONDS"])


class TestLifecycle:
    def test_start_and_stop(self, app, db_session, registered):
        fetched = threading.Event()

        def fetch():
            fetched.set()
            return [_record(7)]

        poller = registered(SyncPoller(app, fetch, SOURCE_S3, interval=60))

        assert poller.start() is True
        assert poller.start() is False
        assert fetched.wait(5)
        assert poller.stop() is True
        assert poller.is_running is False
        assert poller.stop() is False

    def test_admin_controls(self, app, client, db_session, registered):
        registered(SyncPoller(app, lambda: [_record(3)], SOURCE_S3, interval=60))

        ran = client.post("/api/admin/sync/s3/run").get_json()
        assert ran["summary"]["processed"] == 1
        assert ran["runs"] == 1

        status = client.get("/api/admin/sync").get_json()["pollers"]
        assert status[0]["source"] == SOURCE_S3
        assert status[0]["is_running"] is False

        assert client.post("/api/admin/sync/s3/restart").status_code == 400

    def test_stop_all(self, app, registered):
        registered(SyncPoller(app, list, SOURCE_S3, interval=60)).start()
        assert sync_poller.stop_all(app) == 1
