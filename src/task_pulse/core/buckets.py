"""Point-in-time workflow bucket inference.

Storage only keeps each task's current status plus created/updated
timestamps, so a task's bucket on some past day has to be approximated.
The approximation lives here and nowhere else:

* a task created after the reference day did not exist yet and is excluded;
* a task that is ``done`` now counts as ``done`` from the day of its last
  update onwards, and as ``in_progress`` on every earlier day;
* any other task is assumed to have held its current status all along,
  with ``pending_validation`` reported as ``review``.

A done task that is edited again after completion (a title fix, say)
moves its apparent completion date forward. Without a transition log
there is no way to tell a completion update from any other update.
"""

from datetime import datetime

from task_pulse.core.dates import day_floor, to_local
from task_pulse.db.models import Task

STATUS_TO_BUCKET = {
    "todo": "todo",
    "in_progress": "in_progress",
    "pending_validation": "review",
    "done": "done",
}


def bucket_at(task: Task, reference: datetime) -> str | None:
    """Return the bucket ``task`` was most likely in at ``reference``.

    Returns None when the task must be left out entirely: it was created
    after ``reference``, or its creation time is unknown.
    """
    reference = to_local(reference)
    if task.created_at is None or to_local(task.created_at) > reference:
        return None

    if task.status == "done":
        if task.updated_at is None or day_floor(task.updated_at) <= reference:
            return "done"
        return "in_progress"

    return STATUS_TO_BUCKET.get(task.status, "todo")
