"""Data models for task pulse."""

from dataclasses import dataclass
from datetime import date, datetime

TASK_STATUSES = ("todo", "in_progress", "pending_validation", "done")

BUCKETS = ("todo", "in_progress", "review", "done")

# Ordered by priority: earlier labels win and sort first.
HEALTH_STATUSES = ("blocked", "at_risk", "stagnant", "healthy")


@dataclass
class Organization:
    id: str
    name: str
    created_at: datetime | None = None


@dataclass
class Task:
    id: str
    organization_id: str
    title: str = ""
    status: str = "todo"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    due_date: datetime | None = None
    latest_commit_date: datetime | None = None
    latest_comment_date: datetime | None = None


@dataclass
class DailySnapshot:
    organization_id: str
    date: date
    todo_count: int = 0
    in_progress_count: int = 0
    review_count: int = 0
    done_count: int = 0
    total_count: int = 0
    id: int | None = None

    def counts(self) -> dict[str, int]:
        return {
            "todo": self.todo_count,
            "in_progress": self.in_progress_count,
            "review": self.review_count,
            "done": self.done_count,
            "total": self.total_count,
        }


@dataclass
class TaskHealthResult:
    task_id: str
    health_status: str
    last_activity: datetime
    ai_insight: str = ""
    is_unplanned: bool = False
    title: str = ""
    status: str = ""


@dataclass
class EffortDistribution:
    planned_workload: int = 0
    unplanned_workload: int = 0
    interruption_rate: int = 0
