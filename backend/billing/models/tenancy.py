from __future__ import annotations

from ..extensions import db
from billing.time_utils import to_utc_z

class Tenant(db.Model):
    """
    Multi-tenant root: the business account that owns all billing data.

    WHY: Enables shared-database multi-tenancy with strict isolation.
    Customers, plans, quotes, invoices and subscriptions all carry tenant_id.
    No billing operation may cross tenant boundaries.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    # URL slug; also embedded in quote and invoice numbers
    slug = db.Column(db.String(64), nullable=False, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

class CustomerOrganization(db.Model):
    """
    The tenant's counterparty: the organization being quoted, invoiced and subscribed.

    subscription_plan / subscription_status are a cached summary of the most
    recently changed subscription, shown in CRM views.
    """
    __tablename__ = "customer_organizations"
    __table_args__ = (
        db.Index("ix_customer_orgs_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    billing_email = db.Column(db.String(255), nullable=True)
    billing_address = db.Column(db.Text, nullable=True)

    subscription_plan = db.Column(db.String(255), nullable=False, default="free")
    subscription_status = db.Column(db.String(16), nullable=False, default="active")

    # Standing discount on directly created subscriptions: percentage (whole percent) or fixed_amount (cents)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "billing_email": self.billing_email,
            "billing_address": self.billing_address,
            "subscription_plan": self.subscription_plan,
            "subscription_status": self.subscription_status,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
