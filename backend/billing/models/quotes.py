from __future__ import annotations

from ..extensions import db
from .line_items import LineItemsType
from billing.time_utils import to_utc_z

class Quote(db.Model):
    """
    Price quotation sent to a customer organization.

    LIFECYCLE:
    1. DRAFT: Being prepared, line items editable
    2. SENT: Delivered to the customer, awaiting response
    3. ACCEPTED: Customer accepted; an invoice is created in the same transaction
    4. CONVERTED: Linked invoice exists (terminal)
    5. REJECTED / EXPIRED: Customer declined or validity lapsed

    DESIGN PRINCIPLES:
    - Totals are always recomputed server-side from line items
    - `version` counts revisions (parent_quote_id links a revision to its parent)
    - `version_id` is the optimistic-locking row version
    - Never hard-deleted; deleted_at marks soft deletion
    """
    __tablename__ = "quotes"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "quote_number", name="uq_quotes_tenant_number"),
        db.Index("ix_quotes_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer_organizations.id"), nullable=False, index=True)

    # Opaque CRM deal reference
    deal_id = db.Column(db.String(64), nullable=True, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("product_plans.id"), nullable=True, index=True)

    # Human-readable number (e.g., "QUO-ACME-1001")
    quote_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    parent_quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=True, index=True)

    line_items = db.Column(LineItemsType(), nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    converted_to_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    pdf_path = db.Column(db.String(512), nullable=True)

    # Billing snapshot taken from the customer at creation
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
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("CustomerOrganization")
    plan = db.relationship("ProductPlan")
    parent_quote = db.relationship("Quote", remote_side=[id])
    converted_invoice = db.relationship("Invoice", foreign_keys=[converted_to_invoice_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "deal_id": self.deal_id,
            "plan_id": self.plan_id,
            "quote_number": self.quote_number,
            "status": self.status,
            "version": self.version,
            "parent_quote_id": self.parent_quote_id,
            "line_items": [item.to_dict() for item in self.line_items],
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "valid_until": to_utc_z(self.valid_until),
            "converted_to_invoice_id": self.converted_to_invoice_id,
            "pdf_path": self.pdf_path,
            "billing_name": self.billing_name,
            "billing_email": self.billing_email,
            "billing_address": self.billing_address,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "sent_at": to_utc_z(self.sent_at),
            "accepted_at": to_utc_z(self.accepted_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "expired_at": to_utc_z(self.expired_at),
            "version_id": self.version_id,
        }
