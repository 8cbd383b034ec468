from __future__ import annotations

from ..extensions import db
from billing.time_utils import to_utc_z


class ProductPlan(db.Model):
    """Sellable plan in a tenant's catalog. Pricing lives in ProductPricing rows."""
    __tablename__ = "product_plans"
    __table_args__ = (
        db.Index("ix_product_plans_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")  # draft, active, archived

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pricing = db.relationship(
        "ProductPricing",
        backref="plan",
        lazy=True,
        order_by="ProductPricing.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "pricing": [row.to_dict() for row in self.pricing],
            "created_at": to_utc_z(self.created_at),
        }


class ProductPricing(db.Model):
    """
    One stored price for a plan.

    pricing_type: base (default list price) or regional (region-specific override)
    interval: monthly, yearly, or NULL for one-time prices
    per_seat_amount_cents: optional amount charged per seat on top of amount_cents
    """
    __tablename__ = "product_pricing"
    __table_args__ = (
        db.Index("ix_product_pricing_plan_type", "plan_id", "pricing_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("product_plans.id"), nullable=False, index=True)

    pricing_type = db.Column(db.String(16), nullable=False, default="base")
    region = db.Column(db.String(32), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    interval = db.Column(db.String(16), nullable=True)
    per_seat_amount_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "pricing_type": self.pricing_type,
            "region": self.region,
            "currency": self.currency,
            "amount_cents": self.amount_cents,
            "interval": self.interval,
            "per_seat_amount_cents": self.per_seat_amount_cents,
        }


class Coupon(db.Model):
    """
    Tenant-issued discount code redeemable on direct subscription creation.

    discount_type: percentage (discount_value is a whole percent) or
    fixed_amount (discount_value in cents). free_months and trial_extension
    are stored but do not reduce MRR.
    applicable_plan_ids: JSON list of plan ids, or NULL for every plan.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_coupons_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    code = db.Column(db.String(64), nullable=False)

    discount_type = db.Column(db.String(32), nullable=False, default="percentage")
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="active")  # active, inactive, archived

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    max_redemptions = db.Column(db.Integer, nullable=True)
    redemption_count = db.Column(db.Integer, nullable=False, default=0)
    applicable_plan_ids = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def applies_to(self, plan_id: int) -> bool:
        if not self.applicable_plan_ids:
            return True
        return plan_id in self.applicable_plan_ids

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "max_redemptions": self.max_redemptions,
            "redemption_count": self.redemption_count,
            "applicable_plan_ids": self.applicable_plan_ids,
        }
