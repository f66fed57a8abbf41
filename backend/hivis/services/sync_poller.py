# Overview: Explicitly owned background pollers that feed external source records into intake.

from __future__ import annotations

import threading
from typing import Any, Callable

from flask import Flask

from hivis.time_utils import to_utc_z, utcnow
from .intake_service import ingest_batch


POLLERS_EXTENSION_KEY = "hivis_pollers"

FetchFn = Callable[[], list[dict[str, Any]]]


class SyncPoller:
    """
    Periodically pull raw records from one source and ingest them.

    The poller owns its thread and state; nothing is module-global. fetch()
    must return the source's raw records (already-seen records are fine,
    intake is idempotent on external id). Fetch or ingest failures are
    logged and recorded in status(); the loop keeps running.
    """

    def __init__(self, app: Flask, fetch: FetchFn, source: str, interval: float | None = None):
        self.app = app
        self.fetch = fetch
        self.source = source
        self.interval_seconds = float(interval or app.config.get("SYNC_POLL_INTERVAL_SECONDS", 30))
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.runs = 0
        self.ingested = 0
        self.last_run_at = None
        self.last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the loop; returns False if it was already running."""
        with self._lock:
            if self.is_running:
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop, name=f"hivis-sync-{self.source}", daemon=True,
            )
            self._thread.start()
        self.app.logger.info("Started %s sync poller (every %ss)", self.source, self.interval_seconds)
        return True

    def stop(self, timeout: float | None = 5.0) -> bool:
        """Signal the loop to exit and wait for it; returns False if it wasn't running."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return False
            self._stop_event.set()
        thread.join(timeout)
        with self._lock:
            self._thread = None
        self.app.logger.info("Stopped %s sync poller", self.source)
        return True

    def run_once(self) -> dict:
        """One fetch + ingest pass inside an app context."""
        with self.app.app_context():
            try:
                records = self.fetch() or []
                summary = ingest_batch(records, self.source)
            except Exception as exc:
                self.last_error = f"{exc.__class__.__name__}: {exc}"
                self.app.logger.exception("%s sync poll failed", self.source)
                summary = None
            else:
                self.last_error = None
                self.ingested += summary["processed"]
            finally:
                self.runs += 1
                self.last_run_at = utcnow()
        return summary or {"processed": 0, "duplicates": 0, "errors": [{"row": None, "error": self.last_error}]}

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def status(self) -> dict:
        return {
            "is_running": self.is_running,
            "source": self.source,
            "interval_seconds": self.interval_seconds,
            "last_run_at": to_utc_z(self.last_run_at),
            "last_error": self.last_error,
            "runs": self.runs,
            "ingested": self.ingested,
        }


def register_poller(app: Flask, poller: SyncPoller) -> SyncPoller:
    """Make a poller controllable through the admin sync endpoints."""
    app.extensions.setdefault(POLLERS_EXTENSION_KEY, {})[poller.source] = poller
    return poller


def get_poller(app: Flask, source: str) -> SyncPoller | None:
    return app.extensions.get(POLLERS_EXTENSION_KEY, {}).get(source)


def all_pollers(app: Flask) -> list[SyncPoller]:
    return list(app.extensions.get(POLLERS_EXTENSION_KEY, {}).values())


def stop_all(app: Flask) -> int:
    return sum(1 for poller in all_pollers(app) if poller.stop())
