from __future__ import annotations

from ..extensions import db
from .line_items import LineItemsType
from billing.time_utils import to_utc_z

class Invoice(db.Model):
    """
    Payable invoice for a customer organization.

    LIFECYCLE:
    1. DRAFT: Created (standalone or from an accepted quote)
    2. PENDING: Finalized and awaiting payment
    3. OVERDUE: Pending past its due date (set by the overdue sweep)
    4. PAID: Terminal; activates or creates subscriptions
    5. CANCELED: Terminal

    Financial documents are never deleted.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        db.Index("ix_invoices_tenant_status", "tenant_id", "status"),
        db.Index("ix_invoices_tenant_due_date", "tenant_id", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer_organizations.id"), nullable=False, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)
    source_quote_id = db.Column(db.Integer, nullable=True, index=True)

    # Human-readable number (e.g., "INV-ACME-1001")
    invoice_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    line_items = db.Column(LineItemsType(), nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    issue_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    pdf_path = db.Column(db.String(512), nullable=True)

    billing_name = db.Column(db.String(255), nullable=True)
    billing_email = db.Column(db.String(255), nullable=True)
    billing_address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("CustomerOrganization")
    subscription = db.relationship("Subscription", foreign_keys=[subscription_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "subscription_id": self.subscription_id,
            "source_quote_id": self.source_quote_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "line_items": [item.to_dict() for item in self.line_items],
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "issue_date": to_utc_z(self.issue_date),
            "due_date": to_utc_z(self.due_date),
            "paid_at": to_utc_z(self.paid_at),
            "canceled_at": to_utc_z(self.canceled_at),
            "pdf_path": self.pdf_path,
            "billing_name": self.billing_name,
            "billing_email": self.billing_email,
            "billing_address": self.billing_address,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
