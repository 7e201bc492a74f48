"""Organization lookup and management."""

import sqlite3

from task_pulse.core.dates import parse_timestamp
from task_pulse.db.models import Organization


class OrganizationNotFound(LookupError):
    """Raised when an operation targets an organization that does not exist."""

    def __init__(self, organization_id: str):
        super().__init__(f"Organization not found: {organization_id}")
        self.organization_id = organization_id


def create_organization(
    db: sqlite3.Connection,
    organization_id: str,
    name: str,
) -> Organization:
    """Create a new organization."""
    db.execute(
        "INSERT INTO organizations (id, name) VALUES (?, ?)",
        (organization_id, name),
    )
    db.commit()
    return get_organization(db, organization_id)


def get_organization(db: sqlite3.Connection, organization_id: str) -> Organization | None:
    """Get an organization by ID."""
    row = db.execute(
        "SELECT * FROM organizations WHERE id = ?", (organization_id,)
    ).fetchone()
    if not row:
        return None
    return _row_to_organization(row)


def require_organization(db: sqlite3.Connection, organization_id: str) -> Organization:
    """Like get_organization, but raises OrganizationNotFound instead of returning None."""
    org = get_organization(db, organization_id)
    if org is None:
        raise OrganizationNotFound(organization_id)
    return org


def list_organizations(db: sqlite3.Connection) -> list[Organization]:
    """List all organizations."""
    rows = db.execute("SELECT * FROM organizations ORDER BY id").fetchall()
    return [_row_to_organization(r) for r in rows]


def _row_to_organization(row: sqlite3.Row) -> Organization:
    return Organization(
        id=row["id"],
        name=row["name"],
        created_at=parse_timestamp(row["created_at"]),
    )
