"""CLI entry point for task pulse."""

import json
import logging
import sys
from datetime import datetime

import click

from task_pulse.config import get_config
from task_pulse.core import health as health_mod
from task_pulse.core import organizations as organizations_mod
from task_pulse.core import snapshots as snapshots_mod
from task_pulse.core import tasks as tasks_mod
from task_pulse.core.dates import parse_day, parse_timestamp
from task_pulse.core.organizations import OrganizationNotFound
from task_pulse.db.engine import get_db


def _get_db():
    config = get_config()
    return get_db(config.db_path)


def _fail(message: str):
    click.echo(message, err=True)
    sys.exit(1)


def _day_option(value):
    if value is None:
        return None
    try:
        return parse_day(value)
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got '{value}'")


def _timestamp_option(value):
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise click.BadParameter(f"expected an ISO timestamp, got '{value}'")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose):
    """tp - Task Pulse CLI"""
    config = get_config()
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Organization Commands ─────────────────────────────────────────────────────


@main.group("org")
def org_group():
    """Manage organizations."""
    pass


@org_group.command("add")
@click.argument("name")
@click.option("--id", "org_id", default=None, help="Organization ID (defaults to a slug of the name)")
def org_add(name, org_id):
    """Create an organization."""
    org_id = org_id or tasks_mod.slugify(name)
    with _get_db() as db:
        if organizations_mod.get_organization(db, org_id):
            _fail(f"Organization already exists: {org_id}")
        org = organizations_mod.create_organization(db, org_id, name)
        click.echo(f"Organization created: {org.id} ({org.name})")


@org_group.command("list")
def org_list():
    """List organizations."""
    with _get_db() as db:
        orgs = organizations_mod.list_organizations(db)
        if not orgs:
            click.echo("No organizations found.")
            return
        for org in orgs:
            click.echo(f"  {org.id}: {org.name}")


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("org")
@click.argument("title")
@click.option("--status", default="todo", help="todo, in_progress, pending_validation or done")
@click.option("--due", default=None, help="Due date (ISO timestamp)")
def task_add(org, title, status, due):
    """Create a new task."""
    due_date = _timestamp_option(due)
    with _get_db() as db:
        try:
            task = tasks_mod.create_task(db, org, title, status=status, due_date=due_date)
        except OrganizationNotFound as e:
            _fail(str(e))
        except ValueError as e:
            _fail(f"Error: {e}")
        click.echo(f"Created task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Status: {task.status}")
        if task.due_date:
            click.echo(f"  Due: {task.due_date}")


@task_group.command("list")
@click.argument("org")
@click.option("--status", default=None, help="Filter by status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(org, status, json_output):
    """List an organization's tasks."""
    with _get_db() as db:
        try:
            organizations_mod.require_organization(db, org)
        except OrganizationNotFound as e:
            _fail(str(e))
        tasks = tasks_mod.list_tasks(db, org, status=status)

        if json_output:
            click.echo(json.dumps([_task_dict(t) for t in tasks], indent=2))
            return

        if not tasks:
            click.echo("No tasks found.")
            return

        status_icons = {
            "todo": "○",
            "in_progress": "●",
            "pending_validation": "◐",
            "done": "✓",
        }
        for task in tasks:
            icon = status_icons.get(task.status, "?")
            due = f" [due: {task.due_date}]" if task.due_date else ""
            click.echo(f"  {icon} {task.id}: {task.title} ({task.status}){due}")


@task_group.command("status")
@click.argument("task_id")
@click.argument("status")
def task_status(task_id, status):
    """Set a task's status."""
    with _get_db() as db:
        try:
            task = tasks_mod.update_task_status(db, task_id, status)
        except ValueError as e:
            _fail(f"Error: {e}")
        if not task:
            _fail(f"Task not found: {task_id}")
        click.echo(f"Updated {task_id} to {task.status}")


@task_group.command("commit")
@click.argument("task_id")
@click.option("--at", default=None, help="Commit time (ISO timestamp, default now)")
@click.option("--sha", default=None, help="Commit SHA")
def task_commit(task_id, at, sha):
    """Record a commit linked to a task."""
    committed_at = _timestamp_option(at)
    with _get_db() as db:
        task = tasks_mod.record_commit(db, task_id, committed_at, sha=sha)
        if not task:
            _fail(f"Task not found: {task_id}")
        click.echo(f"Recorded commit on {task_id} (latest: {task.latest_commit_date})")


@task_group.command("comment")
@click.argument("task_id")
@click.option("--at", default=None, help="Comment time (ISO timestamp, default now)")
@click.option("--body", default="", help="Comment text")
def task_comment(task_id, at, body):
    """Record a comment on a task."""
    created_at = _timestamp_option(at)
    with _get_db() as db:
        task = tasks_mod.record_comment(db, task_id, created_at, body=body)
        if not task:
            _fail(f"Task not found: {task_id}")
        click.echo(f"Recorded comment on {task_id} (latest: {task.latest_comment_date})")


# ── Snapshot Commands ─────────────────────────────────────────────────────────


@main.group("snapshot")
def snapshot_group():
    """Daily cumulative-flow snapshots."""
    pass


@snapshot_group.command("take")
@click.argument("org")
@click.option("--date", "day", default=None, help="Snapshot day YYYY-MM-DD (default today)")
def snapshot_take(org, day):
    """Reconstruct and store one organization's snapshot for a day."""
    snapshot_day = _day_option(day) or datetime.now()
    with _get_db() as db:
        try:
            snap = snapshots_mod.reconstruct_snapshot(db, org, snapshot_day)
        except OrganizationNotFound as e:
            _fail(str(e))
        click.echo(f"Snapshot {snap.date} for {snap.organization_id}")
        _echo_counts(snap)


@snapshot_group.command("daily")
def snapshot_daily():
    """Take today's snapshot for every organization."""
    with _get_db() as db:
        generated = snapshots_mod.generate_daily_snapshots(db)
        click.echo(f"Generated {generated} snapshot(s).")


@snapshot_group.command("backfill")
@click.option("--start", required=True, help="First day to regenerate, YYYY-MM-DD")
@click.option("--org", default=None, help="Limit to one organization")
def snapshot_backfill(start, org):
    """Regenerate snapshots from a start day through today."""
    start_day = _day_option(start)
    with _get_db() as db:
        try:
            generated = snapshots_mod.backfill_snapshots(db, start_day, organization_id=org)
        except OrganizationNotFound as e:
            _fail(str(e))
        click.echo(f"Backfill complete. Generated {generated} snapshot(s).")


@snapshot_group.command("list")
@click.argument("org")
@click.option("--start", default=None, help="First day, YYYY-MM-DD")
@click.option("--end", default=None, help="Last day, YYYY-MM-DD")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def snapshot_list(org, start, end, json_output):
    """List stored snapshots for an organization."""
    start_day = _day_option(start)
    end_day = _day_option(end)
    with _get_db() as db:
        try:
            organizations_mod.require_organization(db, org)
        except OrganizationNotFound as e:
            _fail(str(e))
        snaps = snapshots_mod.list_snapshots(db, org, start_day, end_day)

        if json_output:
            click.echo(json.dumps(
                [{"date": s.date.isoformat(), **s.counts()} for s in snaps], indent=2
            ))
            return

        if not snaps:
            click.echo("No snapshots found.")
            return
        for s in snaps:
            click.echo(
                f"  {s.date}  todo={s.todo_count} in_progress={s.in_progress_count} "
                f"review={s.review_count} done={s.done_count} total={s.total_count}"
            )


# ── Pulse Command ─────────────────────────────────────────────────────────────


@main.command("pulse")
@click.argument("org")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def pulse(org, json_output):
    """Show live health of an organization's active tasks."""
    config = get_config()
    with _get_db() as db:
        try:
            results, distribution = health_mod.team_pulse(
                db, org, blocked_after_days=config.blocked_after_days
            )
        except OrganizationNotFound as e:
            _fail(str(e))

        if json_output:
            click.echo(json.dumps({
                "tasks": [
                    {
                        "task_id": r.task_id,
                        "health_status": r.health_status,
                        "last_activity": r.last_activity.isoformat(),
                        "ai_insight": r.ai_insight,
                        "is_unplanned": r.is_unplanned,
                    }
                    for r in results
                ],
                "planned_workload": distribution.planned_workload,
                "unplanned_workload": distribution.unplanned_workload,
                "interruption_rate": distribution.interruption_rate,
            }, indent=2))
            return

        if not results:
            click.echo("No active tasks.")
        health_icons = {
            "blocked": "✗",
            "at_risk": "!",
            "stagnant": "~",
            "healthy": "✓",
        }
        for r in results:
            icon = health_icons.get(r.health_status, "?")
            unplanned = " [unplanned]" if r.is_unplanned else ""
            click.echo(f"  {icon} {r.task_id}: {r.health_status}{unplanned}")
            if r.ai_insight:
                click.echo(f"      {r.ai_insight}")
        click.echo(
            f"Planned: {distribution.planned_workload}  "
            f"Unplanned: {distribution.unplanned_workload}  "
            f"Interruption rate: {distribution.interruption_rate}%"
        )


# ── Server Commands ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to listen on")
@click.option("--scheduler/--no-scheduler", default=True, help="Take daily snapshots at midnight")
def serve(host, port, scheduler):
    """Run the JSON API (and the daily snapshot scheduler)."""
    from task_pulse.core.scheduler import SnapshotScheduler
    from task_pulse.web.app import run_server

    config = get_config()
    host = host or config.host
    port = port or config.port

    snapshot_scheduler = SnapshotScheduler(config.db_path) if scheduler else None
    if snapshot_scheduler:
        snapshot_scheduler.start()
    click.echo(f"Serving API at http://{host}:{port}")
    try:
        run_server(host=host, port=port)
    finally:
        if snapshot_scheduler:
            snapshot_scheduler.stop()


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from task_pulse.mcp.server import mcp

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _echo_counts(snap):
    click.echo(f"  Todo: {snap.todo_count}")
    click.echo(f"  In progress: {snap.in_progress_count}")
    click.echo(f"  Review: {snap.review_count}")
    click.echo(f"  Done: {snap.done_count}")
    click.echo(f"  Total: {snap.total_count}")


def _task_dict(task) -> dict:
    def iso(ts):
        return ts.isoformat() if ts else None

    return {
        "id": task.id,
        "organization_id": task.organization_id,
        "title": task.title,
        "status": task.status,
        "created_at": iso(task.created_at),
        "updated_at": iso(task.updated_at),
        "due_date": iso(task.due_date),
        "latest_commit_date": iso(task.latest_commit_date),
        "latest_comment_date": iso(task.latest_comment_date),
    }


if __name__ == "__main__":
    main()
