"""Live task health classification and workload distribution.

Health is recomputed on every request from the task's activity signals.
Nothing here is persisted.

Rules, first match wins:

1. blocked   - not done and no activity for more than a week
2. at_risk   - not done and due by the end of tomorrow (overdue included)
3. stagnant  - in progress with no activity since midnight
4. healthy   - everything else
"""

import logging
import math
import sqlite3
from datetime import datetime, timedelta

from task_pulse.core import organizations as organizations_mod
from task_pulse.core import tasks as tasks_mod
from task_pulse.core.dates import day_floor, end_of_tomorrow, to_local
from task_pulse.db.models import HEALTH_STATUSES, EffortDistribution, Task, TaskHealthResult

logger = logging.getLogger(__name__)

BLOCKED_AFTER_DAYS = 7

_HEALTH_RANK = {status: rank for rank, status in enumerate(HEALTH_STATUSES)}


def last_activity(task: Task) -> datetime:
    """Most recent of updated_at, latest commit and latest comment."""
    signals = [
        to_local(ts)
        for ts in (task.updated_at, task.latest_commit_date, task.latest_comment_date)
        if ts is not None
    ]
    # No signal at all reads as "inactive forever", which lands in blocked.
    return max(signals) if signals else datetime.min


def compute_health_status(
    task: Task,
    now: datetime,
    blocked_after_days: int = BLOCKED_AFTER_DAYS,
) -> str:
    now = to_local(now)
    activity = last_activity(task)

    if task.status != "done" and activity < now - timedelta(days=blocked_after_days):
        return "blocked"

    due = to_local(task.due_date) if task.due_date is not None else None
    if due is not None and due <= end_of_tomorrow(now) and task.status != "done":
        return "at_risk"

    if task.status == "in_progress" and activity < day_floor(now):
        return "stagnant"

    return "healthy"


def generate_insight(health_status: str, task: Task, now: datetime) -> str:
    """Human-readable justification for a health label."""
    now = to_local(now)
    if health_status == "blocked":
        elapsed = now - last_activity(task)
        days = elapsed // timedelta(days=1)
        if days > 0:
            span = f"{days}d"
        else:
            span = f"{elapsed // timedelta(hours=1)}h"
        return f"No activity for {span} - likely blocked by a dependency."

    if health_status == "stagnant":
        return 'Marked "In Progress" but no commits or updates today - check in with assignee.'

    if health_status == "at_risk":
        if task.due_date is None:
            return "Deadline approaching."
        hours = _round_half_up((to_local(task.due_date) - now) / timedelta(hours=1))
        if hours < 0:
            return f"Overdue by {abs(hours)}h - requires immediate attention."
        return f"Deadline in {hours}h - accelerate progress."

    return ""


def classify_task_health(
    task: Task,
    now: datetime,
    blocked_after_days: int = BLOCKED_AFTER_DAYS,
) -> TaskHealthResult:
    """Classify one active task as of ``now``."""
    now = to_local(now)
    health_status = compute_health_status(task, now, blocked_after_days)
    return TaskHealthResult(
        task_id=task.id,
        title=task.title,
        status=task.status,
        health_status=health_status,
        last_activity=_reported_activity(task),
        ai_insight=generate_insight(health_status, task, now),
        is_unplanned=(
            task.created_at is not None and day_floor(task.created_at) == day_floor(now)
        ),
    )


def classify_active_tasks(
    tasks: list[Task],
    now: datetime,
    blocked_after_days: int = BLOCKED_AFTER_DAYS,
) -> list[TaskHealthResult]:
    """Classify every non-done task, most urgent first.

    Tasks missing created_at or updated_at are skipped.
    """
    results = []
    for task in tasks:
        if task.status == "done":
            continue
        if task.created_at is None or task.updated_at is None:
            logger.warning("Skipping task %s in health check: missing timestamps", task.id)
            continue
        results.append(classify_task_health(task, now, blocked_after_days))

    results.sort(key=lambda r: _HEALTH_RANK[r.health_status])
    return results


def compute_effort_distribution(results: list[TaskHealthResult]) -> EffortDistribution:
    """Planned vs. unplanned counts and the interruption rate (0-100)."""
    total = len(results)
    unplanned = sum(1 for r in results if r.is_unplanned)
    rate = _round_half_up(100 * unplanned / total) if total else 0
    return EffortDistribution(
        planned_workload=total - unplanned,
        unplanned_workload=unplanned,
        interruption_rate=rate,
    )


def team_pulse(
    db: sqlite3.Connection,
    organization_id: str,
    now: datetime | None = None,
    blocked_after_days: int = BLOCKED_AFTER_DAYS,
) -> tuple[list[TaskHealthResult], EffortDistribution]:
    """Health of an organization's active tasks plus their effort distribution."""
    organizations_mod.require_organization(db, organization_id)
    now = now or datetime.now()
    tasks = tasks_mod.list_tasks(db, organization_id)
    results = classify_active_tasks(tasks, now, blocked_after_days)
    return results, compute_effort_distribution(results)


def _reported_activity(task: Task) -> datetime:
    activity = last_activity(task)
    if activity == datetime.min and task.created_at is not None:
        return to_local(task.created_at)
    return activity


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)
