"""JSON API for snapshots and team pulse."""

from datetime import datetime

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from task_pulse.config import get_config
from task_pulse.core import health as health_mod
from task_pulse.core import organizations as organizations_mod
from task_pulse.core import snapshots as snapshots_mod
from task_pulse.core.dates import parse_day
from task_pulse.core.organizations import OrganizationNotFound
from task_pulse.db.engine import init_db


def _get_db():
    config = get_config()
    return init_db(config.db_path)


def _not_found(e: OrganizationNotFound) -> JSONResponse:
    return JSONResponse({"error": str(e)}, status_code=404)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


async def _json_body(request: Request) -> dict:
    body = await request.body()
    if not body:
        return {}
    data = await request.json()
    return data if isinstance(data, dict) else {}


# ── Handlers ──────────────────────────────────────────────────────────────────


async def api_list_organizations(request: Request):
    db = _get_db()
    try:
        orgs = organizations_mod.list_organizations(db)
        return JSONResponse([_organization_dict(o) for o in orgs])
    finally:
        db.close()


async def api_list_snapshots(request: Request):
    org_id = request.path_params["org_id"]
    try:
        start = _optional_day(request.query_params.get("start"))
        end = _optional_day(request.query_params.get("end"))
    except ValueError as e:
        return _bad_request(f"Invalid date: {e}")

    db = _get_db()
    try:
        organizations_mod.require_organization(db, org_id)
        snaps = snapshots_mod.list_snapshots(db, org_id, start, end)
        return JSONResponse([_snapshot_dict(s) for s in snaps])
    except OrganizationNotFound as e:
        return _not_found(e)
    finally:
        db.close()


async def api_reconstruct_snapshot(request: Request):
    org_id = request.path_params["org_id"]
    try:
        body = await _json_body(request)
        day = _optional_day(body.get("date"))
    except ValueError as e:
        return _bad_request(f"Invalid request: {e}")

    db = _get_db()
    try:
        snapshot = snapshots_mod.reconstruct_snapshot(db, org_id, day or datetime.now())
        return JSONResponse(_snapshot_dict(snapshot))
    except OrganizationNotFound as e:
        return _not_found(e)
    finally:
        db.close()


async def api_backfill(request: Request):
    try:
        body = await _json_body(request)
        start = _optional_day(body.get("start"))
    except ValueError as e:
        return _bad_request(f"Invalid request: {e}")
    if start is None:
        return _bad_request("'start' is required")

    db = _get_db()
    try:
        generated = snapshots_mod.backfill_snapshots(
            db, start, organization_id=body.get("organization_id")
        )
        return JSONResponse({"snapshots_generated": generated})
    except OrganizationNotFound as e:
        return _not_found(e)
    finally:
        db.close()


async def api_team_pulse(request: Request):
    org_id = request.path_params["org_id"]
    config = get_config()
    db = _get_db()
    try:
        results, distribution = health_mod.team_pulse(
            db, org_id, blocked_after_days=config.blocked_after_days
        )
        return JSONResponse({
            "organization_id": org_id,
            "tasks": [_health_dict(r) for r in results],
            "distribution": _distribution_dict(distribution),
        })
    except OrganizationNotFound as e:
        return _not_found(e)
    finally:
        db.close()


# ── Serialization ─────────────────────────────────────────────────────────────


def _organization_dict(o) -> dict:
    return {
        "id": o.id,
        "name": o.name,
        "created_at": o.created_at.isoformat() if o.created_at else None,
    }


def _snapshot_dict(s) -> dict:
    return {
        "organization_id": s.organization_id,
        "date": s.date.isoformat(),
        "todo_count": s.todo_count,
        "in_progress_count": s.in_progress_count,
        "review_count": s.review_count,
        "done_count": s.done_count,
        "total_count": s.total_count,
    }


def _health_dict(r) -> dict:
    return {
        "task_id": r.task_id,
        "title": r.title,
        "status": r.status,
        "health_status": r.health_status,
        "last_activity": r.last_activity.isoformat(),
        "ai_insight": r.ai_insight,
        "is_unplanned": r.is_unplanned,
    }


def _distribution_dict(d) -> dict:
    return {
        "planned_workload": d.planned_workload,
        "unplanned_workload": d.unplanned_workload,
        "interruption_rate": d.interruption_rate,
    }


def _optional_day(val):
    if val is None or val == "":
        return None
    if not isinstance(val, str):
        raise ValueError(f"expected YYYY-MM-DD, got {val!r}")
    return parse_day(val)


# ── App ───────────────────────────────────────────────────────────────────────


def create_app() -> Starlette:
    routes = [
        Route("/api/organizations", api_list_organizations),
        Route("/api/organizations/{org_id}/snapshots", api_list_snapshots, methods=["GET"]),
        Route("/api/organizations/{org_id}/snapshots", api_reconstruct_snapshot, methods=["POST"]),
        Route("/api/organizations/{org_id}/pulse", api_team_pulse),
        Route("/api/snapshots/backfill", api_backfill, methods=["POST"]),
    ]
    return Starlette(routes=routes)


def run_server(host: str = "127.0.0.1", port: int = 8788):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
