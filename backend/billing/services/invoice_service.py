# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Lifecycle Service

WHY: Paying an invoice is the trigger point for recurring revenue. The
payment, the subscription it activates or creates, the audit entries and the
customer summary must all commit together or not at all.

LIFECYCLE (see INVOICE_MACHINE):
    draft --finalize--> pending --mark_overdue--> overdue
    draft|pending|overdue --pay--> paid (terminal)
    draft|pending|overdue --cancel--> canceled (terminal)

DESIGN PRINCIPLES:
- Totals are recomputed from line items on creation and never edited directly
- Invoices are never deleted
- A second pay on the same invoice fails with AlreadyPaidError and writes nothing
- Rendering runs after commit; its failure never undoes the transition
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from ..errors import AlreadyPaidError, CanceledInvoiceError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CustomerOrganization, Invoice, Subscription
from billing.time_utils import utcnow
from .activity_service import append_activity
from .concurrency import lock_for_update, run_transition
from .document_service import next_document_number
from .lifecycle_service import INVOICE_MACHINE
from .monetary_service import CanonicalDocument, canonicalize_document, format_minor_units
from .pricing_service import load_plan
from .rendering_service import render_and_attach
from .subscription_service import _activate_locked, _create_subscription_locked, billing_period


@dataclass
class PaymentOutcome:
    invoice: Invoice
    # Subscriptions activated (linked) or created (from plan line items)
    subscriptions: list[Subscription] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "invoice": self.invoice.to_dict(),
            "subscriptions": [sub.to_dict() for sub in self.subscriptions],
        }


# =============================================================================
# HELPERS
# =============================================================================

def resolve_invoice_dates(
    issue_date: datetime | None,
    due_date: datetime | None,
) -> tuple[datetime, datetime]:
    """Default to now / now + INVOICE_PAYMENT_TERMS_DAYS; due may not precede issue."""
    issue = issue_date or utcnow()
    due = due_date or issue + timedelta(days=current_app.config.get("INVOICE_PAYMENT_TERMS_DAYS", 30))
    if due < issue:
        raise ValidationError("Due date must be on or after the issue date")
    return issue, due


def _lock_invoice(tenant_id: int, invoice_id: int) -> Invoice:
    invoice = lock_for_update(
        db.session.query(Invoice).filter_by(id=invoice_id, tenant_id=tenant_id)
    ).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _create_invoice_locked(
    *,
    tenant_id: int,
    customer: CustomerOrganization,
    document: CanonicalDocument,
    currency: str,
    issue_date: datetime,
    due_date: datetime,
    actor_id: str | None,
    subscription_id: int | None = None,
    source_quote_id: int | None = None,
    billing_name: str | None = None,
    billing_email: str | None = None,
    billing_address: str | None = None,
    notes: str | None = None,
) -> Invoice:
    """Persist a draft invoice and its "created" entry inside the caller's transaction."""
    invoice = Invoice(
        tenant_id=tenant_id,
        customer_id=customer.id,
        subscription_id=subscription_id,
        source_quote_id=source_quote_id,
        invoice_number=next_document_number(tenant_id, "invoice"),
        status="draft",
        line_items=document.items,
        subtotal_cents=document.subtotal_cents,
        tax_cents=document.tax_cents,
        total_cents=document.total_cents,
        currency=currency,
        issue_date=issue_date,
        due_date=due_date,
        billing_name=billing_name if billing_name is not None else customer.name,
        billing_email=billing_email if billing_email is not None else customer.billing_email,
        billing_address=billing_address if billing_address is not None else customer.billing_address,
        notes=notes,
        created_by=actor_id,
    )
    db.session.add(invoice)
    db.session.flush()

    append_activity(
        tenant_id=tenant_id,
        entity_type="invoice",
        entity_id=invoice.id,
        activity_type="created",
        description=f"Invoice {invoice.invoice_number} created for {format_minor_units(invoice.total_cents, currency)}",
        actor_id=actor_id,
        metadata={"total_cents": invoice.total_cents, "source_quote_id": source_quote_id},
    )
    return invoice


# =============================================================================
# CREATION
# =============================================================================

def create_invoice(
    tenant_id: int,
    customer_id: int,
    line_items: list,
    *,
    tax_cents: int = 0,
    currency: str | None = None,
    issue_date: datetime | None = None,
    due_date: datetime | None = None,
    subscription_id: int | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
) -> Invoice:
    """
    Create a standalone draft invoice.

    Args:
        subscription_id: optional link; paying the invoice then activates it
            instead of creating subscriptions from plan line items

    Raises:
        ValidationError: line items, tax or dates invalid
        NotFoundError: customer or subscription outside the tenant
    """
    document = canonicalize_document(line_items, tax_cents)
    currency_code = (currency or current_app.config.get("DEFAULT_CURRENCY", "USD")).upper()

    def _op():
        customer = db.session.query(CustomerOrganization).filter_by(id=customer_id, tenant_id=tenant_id).first()
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")

        if subscription_id is not None:
            sub = db.session.query(Subscription).filter_by(id=subscription_id, tenant_id=tenant_id).first()
            if sub is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            if sub.customer_id != customer.id:
                raise ValidationError("Subscription belongs to a different customer")

        for item in document.items:
            if item.product_plan_id is not None:
                load_plan(tenant_id, item.product_plan_id)

        issue, due = resolve_invoice_dates(issue_date, due_date)
        return _create_invoice_locked(
            tenant_id=tenant_id,
            customer=customer,
            document=document,
            currency=currency_code,
            issue_date=issue,
            due_date=due,
            actor_id=actor_id,
            subscription_id=subscription_id,
            notes=notes,
        )

    invoice = run_transition(_op)
    current_app.logger.info("Created invoice %s (tenant %s)", invoice.invoice_number, tenant_id)
    render_and_attach("invoice", Invoice, invoice.id)
    return invoice


# =============================================================================
# TRANSITIONS
# =============================================================================

def finalize_invoice(tenant_id: int, invoice_id: int, actor_id: str | None = None) -> Invoice:
    """Draft -> pending: the invoice is issued and awaits payment."""
    def _op():
        invoice = _lock_invoice(tenant_id, invoice_id)
        invoice.status = INVOICE_MACHINE.next_state(invoice.status, "finalize")
        invoice.updated_at = utcnow()
        append_activity(
            tenant_id=tenant_id,
            entity_type="invoice",
            entity_id=invoice.id,
            activity_type="finalized",
            description=f"Invoice {invoice.invoice_number} finalized",
            actor_id=actor_id,
        )
        return invoice

    invoice = run_transition(_op)
    current_app.logger.info("Finalized invoice %s", invoice.invoice_number)
    return invoice


def pay_invoice(tenant_id: int, invoice_id: int, actor_id: str | None = None) -> PaymentOutcome:
    """
    Mark an invoice paid and start the recurring revenue it represents.

    - Linked subscription: activated for a fresh period starting now
    - No link: each line item carrying a product plan seeds a new active
      subscription (seats = quantity, MRR from plan pricing with the line
      total as fallback); a single new subscription is linked back
    - Customer summary ends up reflecting the last subscription touched

    Raises:
        AlreadyPaidError: invoice is paid (nothing is written)
        CanceledInvoiceError: invoice is canceled
        InvalidTransitionError: linked subscription cannot be activated
        PlanPricingNotFoundError: a plan line item cannot be priced
    """
    def _op():
        invoice = _lock_invoice(tenant_id, invoice_id)
        if invoice.status == "paid":
            raise AlreadyPaidError(
                f"Invoice {invoice.invoice_number} is already paid",
                entity_type="invoice",
                current_status=invoice.status,
            )
        if invoice.status == "canceled":
            raise CanceledInvoiceError(
                f"Invoice {invoice.invoice_number} is canceled and cannot be paid",
                entity_type="invoice",
                current_status=invoice.status,
            )

        now = utcnow()
        invoice.status = INVOICE_MACHINE.next_state(invoice.status, "pay")
        invoice.paid_at = now
        invoice.updated_at = now

        append_activity(
            tenant_id=tenant_id,
            entity_type="invoice",
            entity_id=invoice.id,
            activity_type="invoice_paid",
            description=(
                f"Invoice {invoice.invoice_number} paid - "
                f"{format_minor_units(invoice.total_cents, invoice.currency)}"
            ),
            actor_id=actor_id,
            metadata={
                "invoice_number": invoice.invoice_number,
                "total_cents": invoice.total_cents,
                "paid_at": now.isoformat(),
            },
        )

        outcome = PaymentOutcome(invoice=invoice)

        if invoice.subscription_id is not None:
            sub = lock_for_update(
                db.session.query(Subscription).filter_by(id=invoice.subscription_id, tenant_id=tenant_id)
            ).first()
            if sub is None:
                raise NotFoundError(f"Subscription {invoice.subscription_id} not found")
            start, end = billing_period(now, sub.billing_cycle)
            outcome.subscriptions.append(_activate_locked(sub, start, end, actor_id))
            return outcome

        customer = invoice.customer
        for item in invoice.line_items:
            if item.product_plan_id is None:
                continue
            plan = load_plan(tenant_id, item.product_plan_id)
            outcome.subscriptions.append(
                _create_subscription_locked(
                    tenant_id=tenant_id,
                    customer=customer,
                    plan=plan,
                    seats=item.quantity,
                    status="active",
                    actor_id=actor_id,
                    fallback_amount_cents=item.total_cents,
                    anchor=now,
                    source={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
                )
            )

        if len(outcome.subscriptions) == 1:
            invoice.subscription_id = outcome.subscriptions[0].id
        return outcome

    outcome = run_transition(_op)
    current_app.logger.info(
        "Paid invoice %s (%d subscription(s))", outcome.invoice.invoice_number, len(outcome.subscriptions)
    )
    return outcome


def cancel_invoice(tenant_id: int, invoice_id: int, actor_id: str | None = None) -> Invoice:
    """Cancel an unpaid invoice. Paid invoices raise AlreadyPaidError."""
    def _op():
        invoice = _lock_invoice(tenant_id, invoice_id)
        if invoice.status == "paid":
            raise AlreadyPaidError(
                f"Invoice {invoice.invoice_number} is paid and cannot be canceled",
                entity_type="invoice",
                current_status=invoice.status,
            )
        old_status = invoice.status
        now = utcnow()
        invoice.status = INVOICE_MACHINE.next_state(invoice.status, "cancel")
        invoice.canceled_at = now
        invoice.updated_at = now
        append_activity(
            tenant_id=tenant_id,
            entity_type="invoice",
            entity_id=invoice.id,
            activity_type="canceled",
            description=f"Invoice {invoice.invoice_number} canceled",
            actor_id=actor_id,
            metadata={"old_status": old_status},
        )
        return invoice

    invoice = run_transition(_op)
    current_app.logger.info("Canceled invoice %s", invoice.invoice_number)
    return invoice


def mark_overdue_invoices(
    tenant_id: int,
    as_of: datetime | None = None,
    actor_id: str | None = None,
) -> list[Invoice]:
    """
    Sweep: pending invoices whose due date has passed become overdue.

    One "overdue" entry per invoice; all changes commit together.
    """
    def _op():
        cutoff = as_of or utcnow()
        invoices = lock_for_update(
            db.session.query(Invoice)
            .filter(Invoice.tenant_id == tenant_id)
            .filter(Invoice.status == "pending")
            .filter(Invoice.due_date < cutoff)
            .order_by(Invoice.id.asc())
        ).all()
        for invoice in invoices:
            invoice.status = INVOICE_MACHINE.next_state(invoice.status, "mark_overdue")
            invoice.updated_at = utcnow()
            append_activity(
                tenant_id=tenant_id,
                entity_type="invoice",
                entity_id=invoice.id,
                activity_type="overdue",
                description=f"Invoice {invoice.invoice_number} is overdue",
                actor_id=actor_id,
                metadata={"due_date": invoice.due_date.isoformat()},
            )
        return invoices

    invoices = run_transition(_op)
    if invoices:
        current_app.logger.info("Marked %d invoice(s) overdue (tenant %s)", len(invoices), tenant_id)
    return invoices


# =============================================================================
# READS
# =============================================================================

def get_invoice(tenant_id: int, invoice_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id, tenant_id=tenant_id).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def list_invoices(
    tenant_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
) -> list[Invoice]:
    query = db.session.query(Invoice).filter_by(tenant_id=tenant_id)
    if status:
        query = query.filter(Invoice.status == status)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()
