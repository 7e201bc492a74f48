"""Daily snapshot reconstruction, persistence and backfill."""

import logging
import sqlite3
import threading
from datetime import date, datetime

from task_pulse.core import organizations as organizations_mod
from task_pulse.core import tasks as tasks_mod
from task_pulse.core.buckets import bucket_at
from task_pulse.core.dates import day_floor, iter_days
from task_pulse.db.models import BUCKETS, DailySnapshot

logger = logging.getLogger(__name__)


def count_buckets(tasks, reference: datetime) -> dict[str, int]:
    """Tally tasks into bucket counts as of ``reference`` (a day-floor)."""
    counts = {bucket: 0 for bucket in BUCKETS}
    for task in tasks:
        if task.created_at is None:
            logger.warning(
                "Skipping task %s in %s snapshot: missing created_at",
                task.id, reference.date().isoformat(),
            )
            continue
        bucket = bucket_at(task, reference)
        if bucket is not None:
            counts[bucket] += 1
    counts["total"] = sum(counts[bucket] for bucket in BUCKETS)
    return counts


def reconstruct_snapshot(
    db: sqlite3.Connection,
    organization_id: str,
    snapshot_date: datetime | date,
) -> DailySnapshot:
    """Rebuild and persist one organization's bucket counts for one day.

    Raises OrganizationNotFound for an unknown organization.
    """
    organizations_mod.require_organization(db, organization_id)
    reference = day_floor(snapshot_date)

    tasks = tasks_mod.list_tasks(db, organization_id)
    counts = count_buckets(tasks, reference)
    snapshot = upsert_daily_snapshot(db, organization_id, reference, counts)

    logger.debug(
        "Snapshot %s for org %s: todo=%d in_progress=%d review=%d done=%d",
        reference.date().isoformat(), organization_id,
        counts["todo"], counts["in_progress"], counts["review"], counts["done"],
    )
    return snapshot


def upsert_daily_snapshot(
    db: sqlite3.Connection,
    organization_id: str,
    snapshot_date: datetime | date,
    counts: dict[str, int],
) -> DailySnapshot:
    """Create the (organization, day) row or fully overwrite its counts."""
    day = day_floor(snapshot_date).date().isoformat()
    db.execute(
        """INSERT INTO daily_snapshots
               (organization_id, date, todo_count, in_progress_count,
                review_count, done_count, total_count)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(organization_id, date) DO UPDATE SET
               todo_count = excluded.todo_count,
               in_progress_count = excluded.in_progress_count,
               review_count = excluded.review_count,
               done_count = excluded.done_count,
               total_count = excluded.total_count""",
        (
            organization_id,
            day,
            counts["todo"],
            counts["in_progress"],
            counts["review"],
            counts["done"],
            counts["total"],
        ),
    )
    db.commit()
    return get_snapshot(db, organization_id, snapshot_date)


def get_snapshot(
    db: sqlite3.Connection,
    organization_id: str,
    snapshot_date: datetime | date,
) -> DailySnapshot | None:
    """Get the persisted snapshot for one organization and day."""
    row = db.execute(
        "SELECT * FROM daily_snapshots WHERE organization_id = ? AND date = ?",
        (organization_id, day_floor(snapshot_date).date().isoformat()),
    ).fetchone()
    if not row:
        return None
    return _row_to_snapshot(row)


def list_snapshots(
    db: sqlite3.Connection,
    organization_id: str,
    start: datetime | date | None = None,
    end: datetime | date | None = None,
) -> list[DailySnapshot]:
    """List an organization's snapshots in date order, optionally bounded (inclusive)."""
    query = "SELECT * FROM daily_snapshots WHERE organization_id = ?"
    params: list = [organization_id]

    if start is not None:
        query += " AND date >= ?"
        params.append(day_floor(start).date().isoformat())

    if end is not None:
        query += " AND date <= ?"
        params.append(day_floor(end).date().isoformat())

    query += " ORDER BY date ASC"
    rows = db.execute(query, params).fetchall()
    return [_row_to_snapshot(r) for r in rows]


def generate_daily_snapshots(db: sqlite3.Connection, now: datetime | None = None) -> int:
    """Snapshot every organization for today. Returns the number written."""
    today = day_floor(now or datetime.now())
    orgs = organizations_mod.list_organizations(db)
    logger.info("Starting daily snapshot generation for %s", today.date().isoformat())

    generated = 0
    for org in orgs:
        try:
            reconstruct_snapshot(db, org.id, today)
            generated += 1
        except Exception:
            db.rollback()
            logger.exception("Failed to generate snapshot for org %s", org.id)

    logger.info(
        "Daily snapshot generation complete: %d of %d organization(s)",
        generated, len(orgs),
    )
    return generated


def backfill_snapshots(
    db: sqlite3.Connection,
    start_date: datetime | date,
    organization_id: str | None = None,
    now: datetime | None = None,
    cancel_event: threading.Event | None = None,
) -> int:
    """Regenerate snapshots for every day from ``start_date`` through today.

    Days are the outer loop. A failure for one (organization, day) pair is
    logged and skipped, so re-running the same backfill retries just the
    missing days and recomputes the rest with identical counts.
    ``cancel_event`` is checked before each day.

    Returns the number of snapshots successfully generated.
    """
    if organization_id is not None:
        orgs = [organizations_mod.require_organization(db, organization_id)]
    else:
        orgs = organizations_mod.list_organizations(db)

    today = day_floor(now or datetime.now())
    start = day_floor(start_date)
    logger.info(
        "Starting backfill from %s to %s for %d organization(s)",
        start.date().isoformat(), today.date().isoformat(), len(orgs),
    )

    generated = 0
    failed = 0
    for day in iter_days(start, today):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Backfill cancelled before %s", day.date().isoformat())
            break
        for org in orgs:
            try:
                reconstruct_snapshot(db, org.id, day)
                generated += 1
            except Exception:
                db.rollback()
                failed += 1
                logger.exception(
                    "Backfill failed for org %s on %s", org.id, day.date().isoformat()
                )

    logger.info("Backfill complete: %d snapshot(s) generated, %d failed", generated, failed)
    return generated


def _row_to_snapshot(row: sqlite3.Row) -> DailySnapshot:
    return DailySnapshot(
        id=row["id"],
        organization_id=row["organization_id"],
        date=date.fromisoformat(row["date"]),
        todo_count=row["todo_count"],
        in_progress_count=row["in_progress_count"],
        review_count=row["review_count"],
        done_count=row["done_count"],
        total_count=row["total_count"],
    )
