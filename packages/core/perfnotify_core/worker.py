"""Periodic driver: collect one telemetry record, hand it to the serial session."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from perfnotify_link import TransportSession
from perfnotify_telemetry.models import TelemetrySource

from .logging_setup import get_logger


@dataclass
class WorkerStats:
    ticks: int = 0
    sent: int = 0
    skipped: int = 0
    collect_errors: int = 0
    last_collect_s: float = 0.0


class MonitorWorker:
    """Samples ``source`` every ``interval_ms`` and forwards to ``session``.

    Collection runs outside any session lock; a slow sensor read only delays
    the next frame.
    """

    def __init__(self, source: TelemetrySource, session: TransportSession, interval_ms: int = 1000) -> None:
        self.source = source
        self.session = session
        self.interval_ms = interval_ms
        self.stats = WorkerStats()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = get_logger("worker")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        self.stats.ticks += 1
        start = time.perf_counter()
        try:
            record = self.source.collect()
        except Exception:
            self.stats.collect_errors += 1
            self._log.exception("telemetry collection failed")
            return False
        finally:
            self.stats.last_collect_s = time.perf_counter() - start

        if self.session.send(record):
            self.stats.sent += 1
            return True
        self.stats.skipped += 1
        return False

    def _run(self) -> None:
        self._log.info(
            "starting monitoring loop with %dms interval",
            self.interval_ms,
            extra={"event": "worker_started"},
        )
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval_ms / 1000)
        self._log.info("monitoring loop stopped", extra={"event": "worker_stopped"})

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="perfnotify-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
