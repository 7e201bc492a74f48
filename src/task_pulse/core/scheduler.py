"""Background thread that takes the daily snapshots at midnight."""

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path

from task_pulse.core import snapshots as snapshots_mod
from task_pulse.core.dates import day_floor
from task_pulse.db.engine import init_db

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime) -> float:
    """Seconds from ``now`` until the next local midnight."""
    return (day_floor(now) + timedelta(days=1) - now).total_seconds()


class SnapshotScheduler:
    """Runs generate_daily_snapshots once per day, just after midnight."""

    def __init__(self, db_path: Path, run_on_start: bool = False):
        self.db_path = db_path
        self.run_on_start = run_on_start
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self):
        """Start the scheduler thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="snapshot-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Snapshot scheduler started")

    def stop(self):
        """Signal the scheduler thread to stop."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
        logger.info("Snapshot scheduler stopped")

    def run_once(self, now: datetime | None = None) -> int:
        """Take today's snapshots on a fresh connection."""
        db = init_db(self.db_path)
        try:
            return snapshots_mod.generate_daily_snapshots(db, now)
        finally:
            db.close()

    def _run(self):
        if self.run_on_start:
            self._safe_run()
        while not self._stop_event.wait(seconds_until_next_run(datetime.now())):
            self._safe_run()

    def _safe_run(self):
        try:
            self.run_once()
        except Exception:
            logger.exception("Error in snapshot scheduler run")
