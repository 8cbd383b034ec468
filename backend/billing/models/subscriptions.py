from __future__ import annotations

from ..extensions import db
from billing.time_utils import to_utc_z

class Subscription(db.Model):
    """
    Recurring, metered subscription of a customer organization to a product plan.

    Owned jointly by the tenant and the customer it serves.
    An active subscription always has current_period_end > current_period_start
    (enforced by a check constraint as well as by the service layer).
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "subscription_number", name="uq_subscriptions_tenant_number"),
        db.Index("ix_subscriptions_tenant_status", "tenant_id", "status"),
        db.CheckConstraint(
            "status != 'active' OR (current_period_end IS NOT NULL "
            "AND current_period_start IS NOT NULL "
            "AND current_period_end > current_period_start)",
            name="ck_subscriptions_active_period",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer_organizations.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("product_plans.id"), nullable=False, index=True)

    # Human-readable number (e.g., "SUB-1000")
    subscription_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # trial, active, past_due, paused, canceled
    billing_cycle = db.Column(db.String(16), nullable=False, default="monthly")  # monthly, yearly

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)

    mrr_cents = db.Column(db.Integer, nullable=False, default=0)
    seats = db.Column(db.Integer, nullable=False, default=1)

    # Pricing rule that produced mrr_cents (see pricing_service.resolve_pricing)
    pricing_source = db.Column(db.String(32), nullable=True)
    # Customer discount and coupon apply to catalog-priced subscriptions created directly
    discounts_enabled = db.Column(db.Boolean, nullable=False, default=False)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True, index=True)

    # Opaque reference to a CRM record
    linked_deal_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("CustomerOrganization")
    plan = db.relationship("ProductPlan")
    coupon = db.relationship("Coupon")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "plan_id": self.plan_id,
            "subscription_number": self.subscription_number,
            "status": self.status,
            "billing_cycle": self.billing_cycle,
            "current_period_start": to_utc_z(self.current_period_start),
            "current_period_end": to_utc_z(self.current_period_end),
            "mrr_cents": self.mrr_cents,
            "seats": self.seats,
            "pricing_source": self.pricing_source,
            "coupon_id": self.coupon_id,
            "linked_deal_id": self.linked_deal_id,
            "notes": self.notes,
            "canceled_at": to_utc_z(self.canceled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
