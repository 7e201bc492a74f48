"""MCP server exposing snapshot and team pulse tools."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from task_pulse.config import Config, get_config
from task_pulse.core import health as health_mod
from task_pulse.core import organizations as organizations_mod
from task_pulse.core import snapshots as snapshots_mod
from task_pulse.core.dates import parse_day
from task_pulse.core.organizations import OrganizationNotFound
from task_pulse.db.engine import init_db


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Initialize DB connection on startup, close on shutdown."""
    config = get_config()
    db = init_db(config.db_path)
    try:
        yield AppContext(db=db, config=config)
    finally:
        db.close()


mcp = FastMCP("task-pulse", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


# ── Organization Tools ────────────────────────────────────────────────────────


@mcp.tool()
def list_organizations(ctx: Context) -> list[dict]:
    """List all organizations."""
    app = _ctx(ctx)
    return [{"id": o.id, "name": o.name} for o in organizations_mod.list_organizations(app.db)]


# ── Snapshot Tools ────────────────────────────────────────────────────────────


@mcp.tool()
def reconstruct_snapshot(ctx: Context, organization_id: str, date: str) -> dict:
    """Rebuild and store the bucket counts (todo, in_progress, review, done) for one day.

    date: YYYY-MM-DD. Counts for past days are approximated from each task's
    current status and last update time.
    """
    app = _ctx(ctx)
    try:
        snapshot = snapshots_mod.reconstruct_snapshot(app.db, organization_id, parse_day(date))
    except OrganizationNotFound as e:
        return {"error": str(e)}
    except ValueError as e:
        return {"error": f"Invalid date: {e}"}
    return _snapshot_to_dict(snapshot)


@mcp.tool()
def backfill_snapshots(
    ctx: Context,
    start_date: str,
    organization_id: str | None = None,
) -> dict:
    """Regenerate daily snapshots from start_date (YYYY-MM-DD) through today.

    Failed days are logged and skipped; running it again retries them.
    """
    app = _ctx(ctx)
    try:
        generated = snapshots_mod.backfill_snapshots(
            app.db, parse_day(start_date), organization_id=organization_id
        )
    except OrganizationNotFound as e:
        return {"error": str(e)}
    except ValueError as e:
        return {"error": f"Invalid date: {e}"}
    return {"snapshots_generated": generated}


@mcp.tool()
def list_snapshots(
    ctx: Context,
    organization_id: str,
    start: str | None = None,
    end: str | None = None,
) -> dict:
    """List stored daily snapshots for an organization (cumulative flow data)."""
    app = _ctx(ctx)
    try:
        organizations_mod.require_organization(app.db, organization_id)
        snaps = snapshots_mod.list_snapshots(
            app.db,
            organization_id,
            parse_day(start) if start else None,
            parse_day(end) if end else None,
        )
    except OrganizationNotFound as e:
        return {"error": str(e)}
    except ValueError as e:
        return {"error": f"Invalid date: {e}"}
    return {"snapshots": [_snapshot_to_dict(s) for s in snaps]}


# ── Pulse Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
def team_pulse(ctx: Context, organization_id: str) -> dict:
    """Classify every active task as healthy, stagnant, at_risk or blocked.

    Also returns planned vs. unplanned workload and the interruption rate
    (share of active work created today).
    """
    app = _ctx(ctx)
    try:
        results, distribution = health_mod.team_pulse(
            app.db, organization_id, blocked_after_days=app.config.blocked_after_days
        )
    except OrganizationNotFound as e:
        return {"error": str(e)}
    return {
        "tasks": [
            {
                "task_id": r.task_id,
                "title": r.title,
                "health_status": r.health_status,
                "last_activity": r.last_activity.isoformat(),
                "insight": r.ai_insight,
                "is_unplanned": r.is_unplanned,
            }
            for r in results
        ],
        "planned_workload": distribution.planned_workload,
        "unplanned_workload": distribution.unplanned_workload,
        "interruption_rate": distribution.interruption_rate,
    }


# ── Helpers ───────────────────────────────────────────────────────────────────


def _snapshot_to_dict(snapshot) -> dict:
    return {
        "organization_id": snapshot.organization_id,
        "date": snapshot.date.isoformat(),
        **snapshot.counts(),
    }
