"""Task storage operations and activity signal access."""

import logging
import re
import sqlite3
from datetime import datetime

from task_pulse.core.dates import format_timestamp, parse_timestamp
from task_pulse.core.organizations import require_organization
from task_pulse.db.models import TASK_STATUSES, Task

logger = logging.getLogger(__name__)

_TASK_SELECT = """
    SELECT t.*,
           (SELECT MAX(c.committed_at) FROM task_commits c WHERE c.task_id = t.id)
               AS latest_commit_date,
           (SELECT MAX(m.created_at) FROM task_comments m WHERE m.task_id = t.id)
               AS latest_comment_date
    FROM tasks t
"""


def slugify(title: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def _unique_id(db: sqlite3.Connection, base_slug: str) -> str:
    """Generate a unique task ID from a slug, appending a number if needed."""
    candidate = base_slug or "task"
    i = 2
    while db.execute("SELECT id FROM tasks WHERE id = ?", (candidate,)).fetchone():
        candidate = f"{base_slug or 'task'}-{i}"
        i += 1
    return candidate


def _check_status(status: str):
    if status not in TASK_STATUSES:
        raise ValueError(
            f"Invalid status '{status}'. Expected one of: {', '.join(TASK_STATUSES)}"
        )


def create_task(
    db: sqlite3.Connection,
    organization_id: str,
    title: str,
    status: str = "todo",
    due_date: datetime | None = None,
    created_at: datetime | None = None,
    updated_at: datetime | None = None,
) -> Task:
    """Create a new task.

    ``created_at`` and ``updated_at`` default to now; passing them explicitly
    is how historical tasks get imported.
    """
    _check_status(status)
    require_organization(db, organization_id)

    now = datetime.now()
    created_at = created_at or now
    updated_at = updated_at or created_at
    task_id = _unique_id(db, slugify(title))

    db.execute(
        """INSERT INTO tasks (id, organization_id, title, status, due_date, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            task_id,
            organization_id,
            title,
            status,
            format_timestamp(due_date) if due_date else None,
            format_timestamp(created_at),
            format_timestamp(updated_at),
        ),
    )
    db.commit()
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID with its latest commit and comment dates."""
    row = db.execute(_TASK_SELECT + " WHERE t.id = ?", (task_id,)).fetchone()
    if not row:
        return None
    return _row_to_task(row)


def list_tasks(
    db: sqlite3.Connection,
    organization_id: str,
    status: str | None = None,
) -> list[Task]:
    """List an organization's tasks. No status filter unless one is given."""
    query = _TASK_SELECT + " WHERE t.organization_id = ?"
    params: list = [organization_id]

    if status:
        query += " AND t.status = ?"
        params.append(status)

    query += " ORDER BY t.created_at ASC, t.id ASC"
    rows = db.execute(query, params).fetchall()
    return [_row_to_task(r) for r in rows]


def update_task_status(
    db: sqlite3.Connection,
    task_id: str,
    status: str,
    at: datetime | None = None,
) -> Task | None:
    """Update a task's status, stamping updated_at. Returns the updated task."""
    _check_status(status)
    if not get_task(db, task_id):
        return None
    db.execute(
        "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ?",
        (status, format_timestamp(at or datetime.now()), task_id),
    )
    db.commit()
    return get_task(db, task_id)


def set_due_date(
    db: sqlite3.Connection,
    task_id: str,
    due_date: datetime | None,
    at: datetime | None = None,
) -> Task | None:
    """Set or clear a task's due date."""
    if not get_task(db, task_id):
        return None
    db.execute(
        "UPDATE tasks SET due_date = ?, updated_at = ? WHERE id = ?",
        (
            format_timestamp(due_date) if due_date else None,
            format_timestamp(at or datetime.now()),
            task_id,
        ),
    )
    db.commit()
    return get_task(db, task_id)


def record_commit(
    db: sqlite3.Connection,
    task_id: str,
    committed_at: datetime | None = None,
    sha: str | None = None,
) -> Task | None:
    """Record a commit linked to a task. Does not touch the task row itself."""
    if not get_task(db, task_id):
        return None
    db.execute(
        "INSERT INTO task_commits (task_id, sha, committed_at) VALUES (?, ?, ?)",
        (task_id, sha, format_timestamp(committed_at or datetime.now())),
    )
    db.commit()
    return get_task(db, task_id)


def record_comment(
    db: sqlite3.Connection,
    task_id: str,
    created_at: datetime | None = None,
    body: str = "",
) -> Task | None:
    """Record a comment on a task."""
    if not get_task(db, task_id):
        return None
    db.execute(
        "INSERT INTO task_comments (task_id, body, created_at) VALUES (?, ?, ?)",
        (task_id, body, format_timestamp(created_at or datetime.now())),
    )
    db.commit()
    return get_task(db, task_id)


def _row_to_task(row: sqlite3.Row) -> Task:
    task_id = row["id"]
    return Task(
        id=task_id,
        organization_id=row["organization_id"],
        title=row["title"],
        status=row["status"] or "todo",
        created_at=_parse_signal(row["created_at"], task_id, "created_at"),
        updated_at=_parse_signal(row["updated_at"], task_id, "updated_at"),
        due_date=_parse_signal(row["due_date"], task_id, "due_date"),
        latest_commit_date=_parse_signal(row["latest_commit_date"], task_id, "latest_commit_date"),
        latest_comment_date=_parse_signal(row["latest_comment_date"], task_id, "latest_comment_date"),
    )


def _parse_signal(val: str | None, task_id: str, field_name: str) -> datetime | None:
    # A corrupt timestamp becomes a missing one; consumers decide what to skip.
    try:
        return parse_timestamp(val)
    except (TypeError, ValueError):
        logger.warning("Task %s has unparseable %s: %r", task_id, field_name, val)
        return None
