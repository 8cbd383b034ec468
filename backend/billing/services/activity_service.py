# Overview: Service-layer operations for the activity audit trail.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import ActivityLogEntry
from billing.time_utils import utcnow
"""
Activity Audit Trail Invariants

- Append-only: entries are never updated or deleted (enforced by mapper events).
- Entries are written inside the same DB transaction as the transition they
  record; append_activity flushes but never commits.
- A failed transition rolls its entries back with it.
- list_activity returns oldest first, ties broken by id.
"""

ENTITY_TYPES = ("quote", "invoice", "subscription")


def append_activity(
    *,
    tenant_id: int,
    entity_type: str,
    entity_id: int,
    activity_type: str,
    description: str,
    actor_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> ActivityLogEntry:
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Unknown activity entity type '{entity_type}'")

    entry = ActivityLogEntry(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        activity_type=activity_type,
        description=description[:512],
        actor_id=str(actor_id) if actor_id is not None else None,
        payload=metadata or {},
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # assigns id and created_at without committing
    return entry


def list_activity(tenant_id: int, entity_type: str, entity_id: int) -> list[ActivityLogEntry]:
    return (
        db.session.query(ActivityLogEntry)
        .filter_by(tenant_id=tenant_id, entity_type=entity_type, entity_id=entity_id)
        .order_by(ActivityLogEntry.created_at.asc(), ActivityLogEntry.id.asc())
        .all()
    )
