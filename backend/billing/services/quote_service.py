# Overview: Service-layer operations for quotes; encapsulates business logic and database work.

"""
Quote Lifecycle Service

WHY: A quote is the start of the revenue chain. Accepting it must produce
exactly one invoice whose money fields equal the quote's, in the same
transaction that records the acceptance.

LIFECYCLE (see build_quote_machine):
    draft --send--> sent --accept--> accepted --convert--> converted
    sent --reject--> rejected
    sent --expire--> expired --reject--> rejected

DESIGN PRINCIPLES:
- Only drafts are editable; later changes go through revise_quote
- Totals are recomputed from line items on every write
- Quotes are soft-deleted (deleted_at); financial history is kept
- Every state change writes one activity entry keyed by the quote
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CustomerOrganization, Invoice, Quote
from billing.time_utils import utcnow
from .activity_service import append_activity
from .concurrency import lock_for_update, run_transition
from .document_service import next_document_number
from .invoice_service import _create_invoice_locked, resolve_invoice_dates
from .lifecycle_service import quote_machine
from .monetary_service import CanonicalDocument, canonicalize_document, format_minor_units
from .pricing_service import load_plan
from .rendering_service import render_and_attach


DELETABLE_STATUSES = ("draft", "rejected")

# Marks keyword arguments the caller did not pass to update_quote
_UNSET = object()


# =============================================================================
# HELPERS
# =============================================================================

def _load_customer(tenant_id: int, customer_id: int) -> CustomerOrganization:
    customer = db.session.query(CustomerOrganization).filter_by(id=customer_id, tenant_id=tenant_id).first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _lock_quote(tenant_id: int, quote_id: int) -> Quote:
    quote = lock_for_update(
        db.session.query(Quote)
        .filter_by(id=quote_id, tenant_id=tenant_id)
        .filter(Quote.deleted_at.is_(None))
    ).first()
    if quote is None:
        raise NotFoundError(f"Quote {quote_id} not found")
    return quote


def _check_plan_references(tenant_id: int, plan_id: int | None, document: CanonicalDocument | None) -> None:
    if plan_id is not None:
        load_plan(tenant_id, plan_id)
    if document is not None:
        for item in document.items:
            if item.product_plan_id is not None:
                load_plan(tenant_id, item.product_plan_id)


def _apply_document(quote: Quote, document: CanonicalDocument) -> None:
    quote.line_items = document.items
    quote.subtotal_cents = document.subtotal_cents
    quote.tax_cents = document.tax_cents
    quote.total_cents = document.total_cents


def _record(quote: Quote, activity_type: str, description: str, actor_id, metadata: dict | None = None) -> None:
    append_activity(
        tenant_id=quote.tenant_id,
        entity_type="quote",
        entity_id=quote.id,
        activity_type=activity_type,
        description=description,
        actor_id=actor_id,
        metadata=metadata,
    )


# =============================================================================
# CREATION AND DRAFT EDITING
# =============================================================================

def create_quote(
    tenant_id: int,
    customer_id: int,
    line_items: list,
    *,
    tax_cents: int = 0,
    currency: str | None = None,
    valid_until: datetime | None = None,
    deal_id: str | None = None,
    plan_id: int | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
) -> Quote:
    """
    Create a draft quote from caller line items.

    Line totals, subtotal and total are recomputed; claimed totals are only
    checked against the recomputation (1 minor unit tolerance).

    Raises:
        ValidationError: malformed line items or tax
        NotFoundError: customer or referenced plan outside the tenant
    """
    document = canonicalize_document(line_items, tax_cents)
    currency_code = (currency or current_app.config.get("DEFAULT_CURRENCY", "USD")).upper()

    def _op():
        customer = _load_customer(tenant_id, customer_id)
        _check_plan_references(tenant_id, plan_id, document)

        quote = Quote(
            tenant_id=tenant_id,
            customer_id=customer.id,
            deal_id=deal_id,
            plan_id=plan_id,
            quote_number=next_document_number(tenant_id, "quote"),
            status="draft",
            version=1,
            currency=currency_code,
            valid_until=valid_until,
            billing_name=customer.name,
            billing_email=customer.billing_email,
            billing_address=customer.billing_address,
            notes=notes,
            created_by=actor_id,
        )
        _apply_document(quote, document)
        db.session.add(quote)
        db.session.flush()

        _record(
            quote,
            "created",
            f"Quote {quote.quote_number} created for {format_minor_units(quote.total_cents, quote.currency)}",
            actor_id,
            {"total_cents": quote.total_cents, "line_count": len(document.items)},
        )
        return quote

    quote = run_transition(_op)
    current_app.logger.info("Created quote %s (tenant %s)", quote.quote_number, tenant_id)
    return quote


def update_quote(
    tenant_id: int,
    quote_id: int,
    *,
    line_items=_UNSET,
    tax_cents=_UNSET,
    customer_id=_UNSET,
    valid_until=_UNSET,
    deal_id=_UNSET,
    plan_id=_UNSET,
    notes=_UNSET,
    actor_id: str | None = None,
) -> Quote:
    """
    Edit a draft quote. Only the keyword arguments actually passed change.

    Raises:
        InvalidTransitionError: quote is no longer a draft
    """
    def _op():
        quote = _lock_quote(tenant_id, quote_id)
        if quote.status != "draft":
            raise InvalidTransitionError(
                f"Only draft quotes can be edited (quote {quote.quote_number} is {quote.status})",
                entity_type="quote",
                current_status=quote.status,
            )

        changed = []
        if line_items is not _UNSET or tax_cents is not _UNSET:
            document = canonicalize_document(
                quote.line_items if line_items is _UNSET else line_items,
                quote.tax_cents if tax_cents is _UNSET else tax_cents,
            )
            _check_plan_references(tenant_id, None, document)
            _apply_document(quote, document)
            changed.append("line_items")

        if customer_id is not _UNSET and customer_id != quote.customer_id:
            customer = _load_customer(tenant_id, customer_id)
            quote.customer_id = customer.id
            quote.billing_name = customer.name
            quote.billing_email = customer.billing_email
            quote.billing_address = customer.billing_address
            changed.append("customer_id")

        if plan_id is not _UNSET:
            _check_plan_references(tenant_id, plan_id, None)
            quote.plan_id = plan_id
            changed.append("plan_id")

        for name, value in (("valid_until", valid_until), ("deal_id", deal_id), ("notes", notes)):
            if value is not _UNSET:
                setattr(quote, name, value)
                changed.append(name)

        if not changed:
            raise ValidationError("No changes supplied")

        quote.updated_at = utcnow()
        _record(quote, "updated", f"Quote {quote.quote_number} updated", actor_id, {"fields": changed})
        return quote

    return run_transition(_op)


def revise_quote(tenant_id: int, quote_id: int, actor_id: str | None = None) -> Quote:
    """
    Start a new draft revision of a sent, rejected or expired quote.

    The revision copies money fields and references, gets version + 1, a new
    number, and points at its parent. The parent keeps its status.
    """
    def _op():
        parent = _lock_quote(tenant_id, quote_id)
        quote_machine().next_state(parent.status, "revise")

        child = Quote(
            tenant_id=tenant_id,
            customer_id=parent.customer_id,
            deal_id=parent.deal_id,
            plan_id=parent.plan_id,
            quote_number=next_document_number(tenant_id, "quote"),
            status="draft",
            version=parent.version + 1,
            parent_quote_id=parent.id,
            line_items=list(parent.line_items),
            subtotal_cents=parent.subtotal_cents,
            tax_cents=parent.tax_cents,
            total_cents=parent.total_cents,
            currency=parent.currency,
            valid_until=parent.valid_until,
            billing_name=parent.billing_name,
            billing_email=parent.billing_email,
            billing_address=parent.billing_address,
            notes=parent.notes,
            created_by=actor_id,
        )
        db.session.add(child)
        db.session.flush()

        _record(
            parent,
            "revised",
            f"Quote {parent.quote_number} revised as {child.quote_number}",
            actor_id,
            {"revision_id": child.id, "revision_number": child.quote_number},
        )
        _record(
            child,
            "created",
            f"Quote {child.quote_number} created as version {child.version} of {parent.quote_number}",
            actor_id,
            {"parent_quote_id": parent.id, "version": child.version},
        )
        return child

    child = run_transition(_op)
    current_app.logger.info("Revised quote %s -> %s", quote_id, child.quote_number)
    return child


def delete_quote(tenant_id: int, quote_id: int, actor_id: str | None = None) -> Quote:
    """Soft-delete a draft or rejected quote."""
    def _op():
        quote = _lock_quote(tenant_id, quote_id)
        if quote.status not in DELETABLE_STATUSES:
            raise InvalidTransitionError(
                f"Cannot delete quote in status '{quote.status}'. Only draft or rejected quotes can be deleted",
                entity_type="quote",
                current_status=quote.status,
            )
        quote.deleted_at = utcnow()
        _record(quote, "deleted", f"Quote {quote.quote_number} deleted", actor_id, {"status": quote.status})
        return quote

    quote = run_transition(_op)
    current_app.logger.info("Deleted quote %s", quote.quote_number)
    return quote


# =============================================================================
# TRANSITIONS
# =============================================================================

def send_quote(tenant_id: int, quote_id: int, actor_id: str | None = None) -> Quote:
    """
    Draft -> sent. The document is rendered after commit; a rendering failure
    is logged and leaves the quote sent without a pdf_path.
    """
    def _op():
        quote = _lock_quote(tenant_id, quote_id)
        quote.status = quote_machine().next_state(quote.status, "send")
        now = utcnow()
        quote.sent_at = now
        quote.updated_at = now
        _record(quote, "sent", f"Quote {quote.quote_number} sent to {quote.billing_name or 'customer'}", actor_id)
        return quote

    quote = run_transition(_op)
    current_app.logger.info("Sent quote %s", quote.quote_number)
    render_and_attach("quote", Quote, quote.id)
    return quote


def accept_quote(
    tenant_id: int,
    quote_id: int,
    *,
    issue_date: datetime | None = None,
    due_date: datetime | None = None,
    actor_id: str | None = None,
) -> tuple[Quote, Invoice]:
    """
    Accept a sent quote and convert it into a draft invoice.

    The invoice copies line items, subtotal, tax and total verbatim. The quote
    passes through accepted and ends converted; both steps are recorded.

    Raises:
        InvalidTransitionError: quote is not sent (or expired, when
            ALLOW_ACCEPT_EXPIRED_QUOTES is enabled)
        ValidationError: due date before issue date
    """
    def _op():
        quote = _lock_quote(tenant_id, quote_id)
        machine = quote_machine()
        accepted = machine.next_state(quote.status, "accept")
        issue, due = resolve_invoice_dates(issue_date, due_date)

        now = utcnow()
        quote.status = accepted
        quote.accepted_at = now
        quote.updated_at = now
        _record(quote, "accepted", f"Quote {quote.quote_number} accepted", actor_id)

        invoice = _create_invoice_locked(
            tenant_id=tenant_id,
            customer=quote.customer,
            document=CanonicalDocument(
                items=list(quote.line_items),
                subtotal_cents=quote.subtotal_cents,
                tax_cents=quote.tax_cents,
                total_cents=quote.total_cents,
            ),
            currency=quote.currency,
            issue_date=issue,
            due_date=due,
            actor_id=actor_id,
            source_quote_id=quote.id,
            billing_name=quote.billing_name,
            billing_email=quote.billing_email,
            billing_address=quote.billing_address,
            notes=quote.notes,
        )

        quote.status = machine.next_state(quote.status, "convert")
        quote.converted_to_invoice_id = invoice.id
        _record(
            quote,
            "converted",
            f"Quote {quote.quote_number} converted to invoice {invoice.invoice_number}",
            actor_id,
            {"invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
        )
        return quote, invoice

    quote, invoice = run_transition(_op)
    current_app.logger.info("Accepted quote %s -> invoice %s", quote.quote_number, invoice.invoice_number)
    render_and_attach("invoice", Invoice, invoice.id)
    return quote, invoice


def reject_quote(tenant_id: int, quote_id: int, actor_id: str | None = None, reason: str | None = None) -> Quote:
    """Sent or expired -> rejected."""
    def _op():
        quote = _lock_quote(tenant_id, quote_id)
        quote.status = quote_machine().next_state(quote.status, "reject")
        now = utcnow()
        quote.rejected_at = now
        quote.updated_at = now
        _record(
            quote,
            "rejected",
            f"Quote {quote.quote_number} rejected",
            actor_id,
            {"reason": reason} if reason else None,
        )
        return quote

    quote = run_transition(_op)
    current_app.logger.info("Rejected quote %s", quote.quote_number)
    return quote


def expire_quotes(tenant_id: int, as_of: datetime | None = None, actor_id: str | None = None) -> list[Quote]:
    """
    Sweep: sent quotes whose valid_until has passed become expired.

    One "expired" entry per quote; all changes commit together.
    """
    def _op():
        cutoff = as_of or utcnow()
        machine = quote_machine()
        quotes = lock_for_update(
            db.session.query(Quote)
            .filter(Quote.tenant_id == tenant_id)
            .filter(Quote.status == "sent")
            .filter(Quote.deleted_at.is_(None))
            .filter(Quote.valid_until.isnot(None))
            .filter(Quote.valid_until < cutoff)
            .order_by(Quote.id.asc())
        ).all()
        for quote in quotes:
            quote.status = machine.next_state(quote.status, "expire")
            quote.expired_at = cutoff
            quote.updated_at = utcnow()
            _record(
                quote,
                "expired",
                f"Quote {quote.quote_number} expired",
                actor_id,
                {"valid_until": quote.valid_until.isoformat()},
            )
        return quotes

    quotes = run_transition(_op)
    if quotes:
        current_app.logger.info("Expired %d quote(s) (tenant %s)", len(quotes), tenant_id)
    return quotes


# =============================================================================
# READS
# =============================================================================

def get_quote(tenant_id: int, quote_id: int) -> Quote:
    quote = (
        db.session.query(Quote)
        .filter_by(id=quote_id, tenant_id=tenant_id)
        .filter(Quote.deleted_at.is_(None))
        .first()
    )
    if quote is None:
        raise NotFoundError(f"Quote {quote_id} not found")
    return quote


def list_quotes(
    tenant_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
) -> list[Quote]:
    query = db.session.query(Quote).filter_by(tenant_id=tenant_id).filter(Quote.deleted_at.is_(None))
    if status:
        query = query.filter(Quote.status == status)
    if customer_id is not None:
        query = query.filter(Quote.customer_id == customer_id)
    return query.order_by(Quote.created_at.desc(), Quote.id.desc()).all()
