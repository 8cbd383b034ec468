from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from billing.time_utils import to_utc_z


class ActivityLogEntry(db.Model):
    """
    Append-only record of one fact about a billing transition.

    Generic (entity_type, entity_id) pointer with no foreign key, so entries
    outlive the entity they describe. Rows are never updated or deleted.
    """
    __tablename__ = "activity_log_entries"
    __table_args__ = (
        db.Index("ix_activity_entity_created", "entity_type", "entity_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(32), nullable=False, index=True)  # quote, invoice, subscription
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    # What happened
    activity_type = db.Column(db.String(32), nullable=False, index=True)  # created, activated, invoice_paid, seat_added, ...
    description = db.Column(db.String(512), nullable=False)

    actor_id = db.Column(db.String(64), nullable=True, index=True)

    # Optional structured metadata (keep small; do not denormalize domain state)
    payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "activity_type": self.activity_type,
            "description": self.description,
            "actor_id": self.actor_id,
            "metadata": self.payload or {},
            "created_at": to_utc_z(self.created_at),
        }


class ImmutableActivityError(RuntimeError):
    """Raised when code tries to modify or remove a written activity entry."""


@event.listens_for(ActivityLogEntry, "before_update")
def _block_activity_update(mapper, connection, target):
    raise ImmutableActivityError(f"Activity entry {target.id} is append-only")


@event.listens_for(ActivityLogEntry, "before_delete")
def _block_activity_delete(mapper, connection, target):
    raise ImmutableActivityError(f"Activity entry {target.id} is append-only")
