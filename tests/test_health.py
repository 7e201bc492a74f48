"""Tests for live task health classification and workload distribution."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from task_pulse.core import health as health_mod
from task_pulse.core import organizations as organizations_mod
from task_pulse.core import tasks as tasks_mod
from task_pulse.core.organizations import OrganizationNotFound
from task_pulse.db.engine import init_db
from task_pulse.db.models import Task, TaskHealthResult

NOW = datetime(2025, 3, 12, 14, 30)


def make_task(
    task_id="t",
    status="in_progress",
    created_at=None,
    updated_at=None,
    due_date=None,
    latest_commit_date=None,
    latest_comment_date=None,
):
    return Task(
        id=task_id,
        organization_id="acme",
        title=task_id.upper(),
        status=status,
        created_at=created_at or NOW - timedelta(days=20),
        updated_at=updated_at or NOW - timedelta(hours=1),
        due_date=due_date,
        latest_commit_date=latest_commit_date,
        latest_comment_date=latest_comment_date,
    )


def result(is_unplanned, health_status="healthy"):
    return TaskHealthResult(
        task_id="t", health_status=health_status, last_activity=NOW, is_unplanned=is_unplanned
    )


class TestLastActivity:
    def test_falls_back_to_updated_at(self):
        task = make_task(updated_at=NOW - timedelta(days=3))
        assert health_mod.last_activity(task) == NOW - timedelta(days=3)

    def test_picks_most_recent_signal(self):
        task = make_task(
            updated_at=NOW - timedelta(days=3),
            latest_commit_date=NOW - timedelta(hours=2),
            latest_comment_date=NOW - timedelta(days=1),
        )
        assert health_mod.last_activity(task) == NOW - timedelta(hours=2)


class TestHealthRules:
    def test_blocked_beats_at_risk(self):
        task = make_task(
            updated_at=NOW - timedelta(days=10),
            due_date=NOW + timedelta(hours=12),
        )
        res = health_mod.classify_task_health(task, NOW)
        assert res.health_status == "blocked"
        assert res.ai_insight == "No activity for 10d - likely blocked by a dependency."

    def test_blocked_applies_to_todo(self):
        task = make_task(status="todo", updated_at=NOW - timedelta(days=8))
        assert health_mod.compute_health_status(task, NOW) == "blocked"

    def test_recent_commit_prevents_blocked(self):
        task = make_task(
            status="todo",
            updated_at=NOW - timedelta(days=30),
            latest_commit_date=NOW - timedelta(days=2),
        )
        assert health_mod.compute_health_status(task, NOW) == "healthy"

    def test_exactly_seven_days_is_not_blocked(self):
        task = make_task(status="todo", updated_at=NOW - timedelta(days=7))
        assert health_mod.compute_health_status(task, NOW) == "healthy"

    def test_custom_blocked_threshold(self):
        task = make_task(status="todo", updated_at=NOW - timedelta(days=4))
        assert health_mod.compute_health_status(task, NOW, blocked_after_days=3) == "blocked"

    def test_at_risk_even_when_fresh(self):
        task = make_task(updated_at=NOW - timedelta(minutes=5), due_date=NOW + timedelta(hours=12))
        res = health_mod.classify_task_health(task, NOW)
        assert res.health_status == "at_risk"
        assert res.ai_insight == "Deadline in 12h - accelerate progress."

    def test_at_risk_end_of_tomorrow_boundary(self):
        due = datetime(2025, 3, 13, 23, 59, 59)
        task = make_task(status="todo", due_date=due)
        assert health_mod.compute_health_status(task, NOW) == "at_risk"

        task.due_date = datetime(2025, 3, 14, 0, 0, 0)
        assert health_mod.compute_health_status(task, NOW) == "healthy"

    def test_overdue(self):
        task = make_task(due_date=NOW - timedelta(hours=5))
        res = health_mod.classify_task_health(task, NOW)
        assert res.health_status == "at_risk"
        assert res.ai_insight == "Overdue by 5h - requires immediate attention."

    def test_done_is_never_blocked_or_at_risk(self):
        task = make_task(
            status="done",
            updated_at=NOW - timedelta(days=30),
            due_date=NOW - timedelta(days=1),
        )
        assert health_mod.compute_health_status(task, NOW) == "healthy"

    def test_stagnant(self):
        task = make_task(updated_at=NOW - timedelta(days=1, hours=2))
        res = health_mod.classify_task_health(task, NOW)
        assert res.health_status == "stagnant"
        assert "no commits or updates today" in res.ai_insight

    def test_todo_untouched_today_is_healthy(self):
        task = make_task(status="todo", updated_at=NOW - timedelta(days=2))
        assert health_mod.compute_health_status(task, NOW) == "healthy"

    def test_activity_since_midnight_is_healthy(self):
        task = make_task(
            updated_at=NOW - timedelta(days=2),
            latest_comment_date=datetime(2025, 3, 12, 0, 5),
        )
        res = health_mod.classify_task_health(task, NOW)
        assert res.health_status == "healthy"
        assert res.ai_insight == ""

    def test_blocked_insight_in_hours(self):
        task = make_task(updated_at=NOW - timedelta(hours=20))
        assert health_mod.generate_insight("blocked", task, NOW) == (
            "No activity for 20h - likely blocked by a dependency."
        )

    def test_unplanned_when_created_today(self):
        task = make_task(created_at=datetime(2025, 3, 12, 8, 0))
        assert health_mod.classify_task_health(task, NOW).is_unplanned is True

    def test_planned_when_created_yesterday(self):
        task = make_task(created_at=datetime(2025, 3, 11, 23, 59))
        assert health_mod.classify_task_health(task, NOW).is_unplanned is False



class TestTimezoneAwareInputs:
    def test_aware_now(self):
        task = make_task(updated_at=NOW - timedelta(hours=1))
        res = health_mod.classify_task_health(task, NOW.astimezone(timezone.utc))
        assert res.health_status == "healthy"
        assert res.last_activity == NOW - timedelta(hours=1)

    def test_aware_task_timestamps(self):
        task = make_task(
            updated_at=(NOW - timedelta(days=10)).astimezone(timezone.utc),
            due_date=(NOW + timedelta(hours=5)).astimezone(timezone.utc),
        )
        res = health_mod.classify_task_health(task, NOW)
        assert res.health_status == "blocked"
        assert res.last_activity == NOW - timedelta(days=10)
        assert res.last_activity.tzinfo is None

        task = make_task(due_date=(NOW + timedelta(hours=5)).astimezone(timezone.utc))
        res = health_mod.classify_task_health(task, NOW.astimezone(timezone.utc))
        assert res.health_status == "at_risk"
        assert res.ai_insight == "Deadline in 5h - accelerate progress."


class TestNoActivitySignals:
    def test_blocked_but_reports_created_at(self):
        task = make_task(status="todo", created_at=NOW - timedelta(days=3))
        task.updated_at = None
        res = health_mod.classify_task_health(task, NOW)
        assert res.health_status == "blocked"
        assert res.last_activity == NOW - timedelta(days=3)

class TestClassifyActiveTasks:
    def test_excludes_done_and_sorts_by_urgency(self):
        tasks = [
            make_task("healthy", status="todo"),
            make_task("stagnant", updated_at=NOW - timedelta(days=2)),
            make_task("done", status="done"),
            make_task("blocked", updated_at=NOW - timedelta(days=9)),
            make_task("risky", due_date=NOW + timedelta(hours=3)),
        ]
        results = health_mod.classify_active_tasks(tasks, NOW)
        assert [r.task_id for r in results] == ["blocked", "risky", "stagnant", "healthy"]

    def test_skips_tasks_missing_timestamps(self):
        broken = make_task("broken")
        broken.created_at = None
        results = health_mod.classify_active_tasks([broken, make_task("ok")], NOW)
        assert [r.task_id for r in results] == ["ok"]


class TestEffortDistribution:
    def test_empty(self):
        dist = health_mod.compute_effort_distribution([])
        assert dist.planned_workload == 0
        assert dist.unplanned_workload == 0
        assert dist.interruption_rate == 0

    def test_counts_and_rate(self):
        dist = health_mod.compute_effort_distribution(
            [result(True), result(False), result(False)]
        )
        assert dist.planned_workload == 2
        assert dist.unplanned_workload == 1
        assert dist.interruption_rate == 33

    def test_rate_rounds_half_up(self):
        dist = health_mod.compute_effort_distribution([result(True)] + [result(False)] * 7)
        assert dist.interruption_rate == 13

    def test_all_unplanned(self):
        dist = health_mod.compute_effort_distribution([result(True), result(True)])
        assert dist.interruption_rate == 100


class TestTeamPulse:
    @pytest.fixture
    def db(self):
        with tempfile.TemporaryDirectory() as tmp:
            conn = init_db(Path(tmp) / "test.db")
            organizations_mod.create_organization(conn, "acme", "Acme Corp")
            yield conn
            conn.close()

    def test_uses_commit_and_comment_signals(self, db):
        tasks_mod.create_task(
            db, "acme", "Quiet", status="in_progress",
            created_at=NOW - timedelta(days=15), updated_at=NOW - timedelta(days=12),
        )
        tasks_mod.create_task(
            db, "acme", "Busy", status="in_progress",
            created_at=NOW - timedelta(days=15), updated_at=NOW - timedelta(days=12),
        )
        tasks_mod.record_commit(db, "busy", NOW - timedelta(days=3), sha="abc123")
        tasks_mod.record_comment(db, "busy", NOW - timedelta(hours=1), body="on it")
        tasks_mod.create_task(db, "acme", "Hotfix", created_at=NOW - timedelta(hours=2))
        tasks_mod.create_task(
            db, "acme", "Shipped", status="done", created_at=NOW - timedelta(days=3),
        )

        results, dist = health_mod.team_pulse(db, "acme", now=NOW)

        by_id = {r.task_id: r for r in results}
        assert set(by_id) == {"quiet", "busy", "hotfix"}
        assert by_id["quiet"].health_status == "blocked"
        assert by_id["busy"].health_status == "healthy"
        assert by_id["busy"].last_activity == NOW - timedelta(hours=1)
        assert by_id["hotfix"].is_unplanned is True
        assert dist.planned_workload == 2
        assert dist.unplanned_workload == 1
        assert dist.interruption_rate == 33

    def test_unknown_organization(self, db):
        with pytest.raises(OrganizationNotFound):
            health_mod.team_pulse(db, "nope", now=NOW)
