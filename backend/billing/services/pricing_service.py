# Overview: Resolve a plan's stored pricing rows into MRR and a billing cycle.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import or_, update

from ..errors import NotFoundError, PlanPricingNotFoundError, ValidationError
from ..extensions import db
from ..models import Coupon, ProductPlan, ProductPricing


@dataclass(frozen=True)
class PricingResolution:
    mrr_cents: int
    billing_cycle: str
    # Which rule produced the figure: monthly_base, yearly_base, fallback, monthly_regional, yearly_regional
    source: str


def divide_round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounding .5 away from zero for non-negative inputs."""
    return (2 * numerator + denominator) // (2 * denominator)


def _find(rows: list, pricing_type: str, interval: str):
    for row in rows:
        if row.pricing_type == pricing_type and row.interval == interval:
            return row
    return None


def _seat_amount(row, seats: int) -> int:
    per_seat = row.per_seat_amount_cents
    if not per_seat:
        return 0
    return per_seat * seats


def plan_has_seat_pricing(rows: Iterable) -> bool:
    return any(row.per_seat_amount_cents for row in rows)


def resolve_pricing(rows: Iterable, seats: int, fallback_amount_cents: int | None = None) -> PricingResolution:
    """
    Pick the price that defines MRR for a subscription.

    Resolution order:
    1. monthly base price
    2. yearly base price / 12 (rounded half up)
    3. fallback_amount_cents (line-item total carried from a quote)
    4. monthly regional price
    5. yearly regional price / 12

    The chosen row's per-seat amount x seats is added on top. Yearly per-seat
    amounts are added as stored (not divided), matching existing MRR figures.

    Raises:
        PlanPricingNotFoundError: nothing above applies
    """
    rows = list(rows)

    monthly_base = _find(rows, "base", "monthly")
    if monthly_base is not None:
        return PricingResolution(
            monthly_base.amount_cents + _seat_amount(monthly_base, seats), "monthly", "monthly_base"
        )

    yearly_base = _find(rows, "base", "yearly")
    if yearly_base is not None:
        mrr = divide_round_half_up(yearly_base.amount_cents, 12) + _seat_amount(yearly_base, seats)
        return PricingResolution(mrr, "yearly", "yearly_base")

    if fallback_amount_cents is not None:
        return PricingResolution(fallback_amount_cents, "monthly", "fallback")

    monthly_regional = _find(rows, "regional", "monthly")
    if monthly_regional is not None:
        return PricingResolution(
            monthly_regional.amount_cents + _seat_amount(monthly_regional, seats),
            "monthly",
            "monthly_regional",
        )

    yearly_regional = _find(rows, "regional", "yearly")
    if yearly_regional is not None:
        mrr = divide_round_half_up(yearly_regional.amount_cents, 12) + _seat_amount(yearly_regional, seats)
        return PricingResolution(mrr, "yearly", "yearly_regional")

    raise PlanPricingNotFoundError("No recurring pricing found for plan")


def load_plan(tenant_id: int, plan_id: int) -> ProductPlan:
    plan = db.session.query(ProductPlan).filter_by(id=plan_id, tenant_id=tenant_id).first()
    if plan is None:
        raise NotFoundError(f"Product plan {plan_id} not found")
    return plan


def load_pricing_rows(plan_id: int) -> list[ProductPricing]:
    return (
        db.session.query(ProductPricing)
        .filter_by(plan_id=plan_id)
        .order_by(ProductPricing.id.asc())
        .all()
    )


def resolve_plan_pricing(
    tenant_id: int,
    plan_id: int,
    seats: int,
    fallback_amount_cents: int | None = None,
) -> PricingResolution:
    """Tenant-scoped variant: NotFoundError when the plan belongs to another tenant."""
    plan = load_plan(tenant_id, plan_id)
    try:
        return resolve_pricing(load_pricing_rows(plan.id), seats, fallback_amount_cents)
    except PlanPricingNotFoundError as exc:
        raise PlanPricingNotFoundError(
            f"No recurring pricing found for plan '{plan.name}'", details={"plan_id": plan.id}
        ) from exc


# Catalog rule -> (pricing_type, interval) of the row it reads
_SOURCE_ROWS = {
    "monthly_base": ("base", "monthly"),
    "yearly_base": ("base", "yearly"),
    "monthly_regional": ("regional", "monthly"),
    "yearly_regional": ("regional", "yearly"),
}


def reprice(rows: Iterable, seats: int, source: str | None) -> PricingResolution:
    """
    Re-resolve MRR for a new seat count using the rule that priced the subscription.

    A subscription priced from regional rows keeps its regional price even if a
    base row has been added since. When that row is gone the normal order applies.
    """
    rows = list(rows)
    wanted = _SOURCE_ROWS.get(source)
    row = _find(rows, *wanted) if wanted else None
    if row is None:
        return resolve_pricing(rows, seats)

    _, interval = wanted
    amount = divide_round_half_up(row.amount_cents, 12) if interval == "yearly" else row.amount_cents
    return PricingResolution(amount + _seat_amount(row, seats), interval, source)


def scale_by_seats(mrr_cents: int, old_seats: int, new_seats: int) -> int:
    """A negotiated (fallback) price scales with the seat count it was quoted for."""
    return divide_round_half_up(mrr_cents * new_seats, old_seats)


# =============================================================================
# DISCOUNTS
# =============================================================================

@dataclass(frozen=True)
class DiscountedPrice:
    base_mrr_cents: int
    customer_discount_cents: int
    coupon_discount_cents: int

    @property
    def mrr_cents(self) -> int:
        return max(0, self.base_mrr_cents - self.customer_discount_cents - self.coupon_discount_cents)

    def to_metadata(self) -> dict:
        return {
            "base_mrr_cents": self.base_mrr_cents,
            "customer_discount_cents": self.customer_discount_cents,
            "coupon_discount_cents": self.coupon_discount_cents,
        }


def _discount_amount(base_mrr_cents: int, discount_type: str | None, value: int | None) -> int:
    if not discount_type or not value:
        return 0
    if discount_type == "percentage":
        return divide_round_half_up(base_mrr_cents * value, 100)
    if discount_type == "fixed_amount":
        return value
    # free_months / trial_extension do not change MRR
    return 0


def apply_discounts(base_mrr_cents: int, customer=None, coupon=None) -> DiscountedPrice:
    """
    Subtract the customer's standing discount and the coupon discount from MRR.

    Both are computed from the undiscounted figure; the result never goes below zero.
    """
    customer_discount = 0
    if customer is not None:
        customer_discount = _discount_amount(base_mrr_cents, customer.discount_type, customer.discount_value)
    coupon_discount = 0
    if coupon is not None:
        coupon_discount = _discount_amount(base_mrr_cents, coupon.discount_type, coupon.discount_value)
    return DiscountedPrice(base_mrr_cents, customer_discount, coupon_discount)


def redeem_coupon(tenant_id: int, coupon_id: int, plan_id: int, as_of: datetime) -> Coupon:
    """
    Check a coupon against a plan and count one redemption, inside the caller's transaction.

    The counter moves with a conditional UPDATE so two concurrent redemptions
    cannot both take the last slot.

    Raises:
        NotFoundError: coupon outside the tenant
        ValidationError: inactive, expired, exhausted, or not valid for the plan
    """
    coupon = db.session.query(Coupon).filter_by(id=coupon_id, tenant_id=tenant_id).first()
    if coupon is None:
        raise NotFoundError(f"Coupon {coupon_id} not found")
    if coupon.status != "active":
        raise ValidationError(f"Coupon {coupon.code} is not active")
    if coupon.expires_at is not None and coupon.expires_at < as_of:
        raise ValidationError(f"Coupon {coupon.code} has expired")
    if not coupon.applies_to(plan_id):
        raise ValidationError(f"Coupon {coupon.code} does not apply to this plan")

    result = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.max_redemptions.is_(None), Coupon.redemption_count < Coupon.max_redemptions),
        )
        .values(redemption_count=Coupon.redemption_count + 1, updated_at=as_of)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationError(f"Coupon {coupon.code} has reached its maximum redemptions")
    db.session.refresh(coupon)
    return coupon
