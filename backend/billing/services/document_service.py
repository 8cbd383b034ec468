# Overview: Per-tenant document number allocation for quotes, invoices and subscriptions.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConcurrentModificationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DocumentSequence, Invoice, Quote, Subscription, Tenant
from .concurrency import run_transition


@dataclass(frozen=True)
class DocumentKind:
    prefix: str
    # Added to the 1-based counter: QUO-ACME-1001, SUB-1000
    base: int
    include_tenant_slug: bool
    model: type
    number_column: str

    def render(self, tenant_slug: str, counter: int) -> str:
        if self.include_tenant_slug:
            return f"{self.prefix}-{tenant_slug.upper()}-{self.base + counter}"
        return f"{self.prefix}-{self.base + counter}"


DOCUMENT_KINDS = {
    "quote": DocumentKind("QUO", 1000, True, Quote, "quote_number"),
    "invoice": DocumentKind("INV", 1000, True, Invoice, "invoice_number"),
    "subscription": DocumentKind("SUB", 999, False, Subscription, "subscription_number"),
}


def _claim_counter(tenant_id: int, document_type: str) -> int:
    """
    Atomically claim the next counter value for a tenant/type.

    The UPDATE takes the row lock, so two writers can never read the same
    value. The first allocation for a tenant creates the row inside a
    SAVEPOINT; losing that insert race falls back to the UPDATE.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _read_claimed() -> int:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(tenant_id=tenant_id, document_type=document_type)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        return _read_claimed()

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(tenant_id=tenant_id, document_type=document_type, next_number=2))
        return 1
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise ConcurrentModificationError(
                f"Could not claim a {document_type} number for tenant {tenant_id}"
            )
        return _read_claimed()


def next_document_number(tenant_id: int, document_type: str) -> str:
    """
    Allocate the next human-readable number for a tenant/document type.

    Must run inside the caller's transaction (see run_transition) so the
    number is released again if the enclosing transition rolls back.

    A number that already exists on a document (e.g. rows imported before
    sequences existed) counts as a collision: the counter advances and the
    allocation is retried up to SEQUENCE_MAX_ATTEMPTS times.
    """
    kind = DOCUMENT_KINDS.get(document_type)
    if kind is None:
        raise ValidationError(f"Unknown document type '{document_type}'")

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")

    number_column = getattr(kind.model, kind.number_column)
    max_attempts = current_app.config.get("SEQUENCE_MAX_ATTEMPTS", 5)

    for _ in range(max_attempts):
        number = kind.render(tenant.slug, _claim_counter(tenant_id, document_type))
        taken = (
            db.session.query(kind.model.id)
            .filter(kind.model.tenant_id == tenant_id, number_column == number)
            .first()
        )
        if taken is None:
            return number
        current_app.logger.warning(
            "Document number %s already used in tenant %s; advancing sequence", number, tenant_id
        )

    raise ConcurrentModificationError(
        f"Could not allocate a unique {document_type} number after {max_attempts} attempts",
        details={"tenant_id": tenant_id, "document_type": document_type},
    )


def allocate_document_number(tenant_id: int, document_type: str) -> str:
    """Allocate and commit a number outside any lifecycle transition."""
    return run_transition(lambda: next_document_number(tenant_id, document_type))
