# Overview: Service-layer operations for subscriptions; encapsulates business logic and database work.

"""
Subscription Lifecycle Service

WHY: Subscriptions carry recurring revenue. Their status, billing period,
seats and plan must change atomically with the audit entry describing the
change, and MRR is always recomputed server-side.

DESIGN PRINCIPLES:
- Legality of status changes comes from SUBSCRIPTION_MACHINE
- Canceled is terminal; seats and plan are frozen afterwards (notes stay editable)
- Active implies current_period_end > current_period_start
- No proration: seat and plan changes recompute MRR going forward only
- MRR is recomputed with the rule that produced it (pricing_source), so a
  negotiated invoice price is scaled rather than replaced by a catalog row
- Customer discount and coupon apply only to directly created subscriptions
- The customer's cached plan/status summary follows every change
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CustomerOrganization, ProductPlan, Subscription
from billing.time_utils import BILLING_CYCLES, add_billing_cycle, utcnow
from .activity_service import append_activity
from .concurrency import lock_for_update, run_transition
from .document_service import next_document_number
from .lifecycle_service import SUBSCRIPTION_MACHINE
from .pricing_service import (
    apply_discounts,
    load_plan,
    load_pricing_rows,
    plan_has_seat_pricing,
    redeem_coupon,
    reprice,
    resolve_pricing,
    scale_by_seats,
)


# Customer summary uses the CRM vocabulary for trials
_SUMMARY_STATUS = {"trial": "trialing"}

# Target status -> (event, activity type)
_STATUS_EVENTS = {
    "active": ("activate", "activated"),
    "paused": ("pause", "paused"),
    "canceled": ("cancel", "canceled"),
    "past_due": ("mark_past_due", "past_due"),
}


# =============================================================================
# HELPERS
# =============================================================================

def billing_period(anchor: datetime, billing_cycle: str) -> tuple[datetime, datetime]:
    """
    Period starting at anchor and lasting one billing cycle.

    2024-01-15 monthly -> (2024-01-15, 2024-02-15); yearly -> (2024-01-15, 2025-01-15)
    """
    try:
        return anchor, add_billing_cycle(anchor, billing_cycle)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def sync_customer_summary(
    customer: CustomerOrganization,
    *,
    status: str | None = None,
    plan_name: str | None = None,
) -> None:
    if status is not None:
        customer.subscription_status = _SUMMARY_STATUS.get(status, status)
    if plan_name is not None:
        customer.subscription_plan = plan_name
    customer.updated_at = utcnow()


def _load_customer(tenant_id: int, customer_id: int) -> CustomerOrganization:
    customer = db.session.query(CustomerOrganization).filter_by(id=customer_id, tenant_id=tenant_id).first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _lock_subscription(tenant_id: int, subscription_id: int) -> Subscription:
    sub = lock_for_update(
        db.session.query(Subscription).filter_by(id=subscription_id, tenant_id=tenant_id)
    ).first()
    if sub is None:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    return sub


def _discounted_mrr(sub: Subscription, base_mrr_cents: int, plan_id: int) -> int:
    """Re-apply the discounts a subscription was created with to a recomputed MRR."""
    if not sub.discounts_enabled:
        return base_mrr_cents
    coupon = sub.coupon if sub.coupon is not None and sub.coupon.applies_to(plan_id) else None
    return apply_discounts(base_mrr_cents, sub.customer, coupon).mrr_cents


def _ensure_not_canceled(sub: Subscription, action: str) -> None:
    if sub.status == "canceled":
        raise InvalidTransitionError(
            f"Cannot {action} subscription {sub.subscription_number} in status 'canceled'",
            entity_type="subscription",
            current_status=sub.status,
        )


# =============================================================================
# CREATION / ACTIVATION (shared with invoice payment)
# =============================================================================

def _create_subscription_locked(
    *,
    tenant_id: int,
    customer: CustomerOrganization,
    plan: ProductPlan,
    seats: int,
    status: str,
    actor_id: str | None,
    billing_cycle: str | None = None,
    fallback_amount_cents: int | None = None,
    anchor: datetime | None = None,
    discounts_enabled: bool = False,
    coupon_id: int | None = None,
    linked_deal_id: str | None = None,
    notes: str | None = None,
    source: dict | None = None,
) -> Subscription:
    """
    Create a subscription inside the caller's transaction.

    With discounts_enabled the customer's standing discount and the coupon
    (checked and redeemed here) are subtracted from the catalog MRR.

    Writes "created", and "activated" as well when the subscription starts
    active. Does not commit.
    """
    if status not in SUBSCRIPTION_MACHINE.initial_states:
        raise ValidationError(f"New subscriptions must start as trial or active, not '{status}'")
    if seats < 1:
        raise ValidationError("Seats must be at least 1")
    if coupon_id is not None and not discounts_enabled:
        raise ValidationError("Coupons can only be applied to directly created subscriptions")

    resolution = resolve_pricing(load_pricing_rows(plan.id), seats, fallback_amount_cents)
    cycle = billing_cycle or resolution.billing_cycle
    if cycle not in BILLING_CYCLES:
        raise ValidationError(f"Invalid billing cycle '{cycle}'. Must be one of: {', '.join(BILLING_CYCLES)}")

    now = anchor or utcnow()
    period_start, period_end = billing_period(now, cycle)

    mrr_cents = resolution.mrr_cents
    pricing = None
    coupon = None
    if discounts_enabled:
        if coupon_id is not None:
            coupon = redeem_coupon(tenant_id, coupon_id, plan.id, now)
        pricing = apply_discounts(resolution.mrr_cents, customer, coupon)
        mrr_cents = pricing.mrr_cents

    sub = Subscription(
        tenant_id=tenant_id,
        customer_id=customer.id,
        plan_id=plan.id,
        subscription_number=next_document_number(tenant_id, "subscription"),
        status=status,
        billing_cycle=cycle,
        current_period_start=period_start,
        current_period_end=period_end,
        mrr_cents=mrr_cents,
        seats=seats,
        pricing_source=resolution.source,
        discounts_enabled=discounts_enabled,
        coupon_id=coupon.id if coupon is not None else None,
        linked_deal_id=linked_deal_id,
        notes=notes,
    )
    db.session.add(sub)
    db.session.flush()

    metadata = {
        "plan": plan.name,
        "billing_cycle": cycle,
        "seats": seats,
        "mrr_cents": mrr_cents,
        "pricing_source": resolution.source,
    }
    if pricing is not None:
        metadata.update(pricing.to_metadata())
    if coupon is not None:
        metadata["coupon_code"] = coupon.code
    if source:
        metadata.update(source)
    append_activity(
        tenant_id=tenant_id,
        entity_type="subscription",
        entity_id=sub.id,
        activity_type="created",
        description=f"Subscription {sub.subscription_number} created for {customer.name} on {plan.name} plan",
        actor_id=actor_id,
        metadata=metadata,
    )
    if status == "active":
        _record_activation(sub, customer, plan, actor_id)

    sync_customer_summary(customer, status=status, plan_name=plan.name)
    return sub


def _record_activation(sub: Subscription, customer: CustomerOrganization, plan: ProductPlan, actor_id) -> None:
    append_activity(
        tenant_id=sub.tenant_id,
        entity_type="subscription",
        entity_id=sub.id,
        activity_type="activated",
        description=f"Subscription {sub.subscription_number} activated for {customer.name}",
        actor_id=actor_id,
        metadata={
            "plan": plan.name,
            "billing_cycle": sub.billing_cycle,
            "period_start": sub.current_period_start.isoformat(),
            "period_end": sub.current_period_end.isoformat(),
        },
    )


def _activate_locked(
    sub: Subscription,
    period_start: datetime,
    period_end: datetime,
    actor_id: str | None,
) -> Subscription:
    """Activate an already-locked subscription inside the caller's transaction."""
    if period_end <= period_start:
        raise ValidationError("Billing period end must be after its start")

    sub.status = SUBSCRIPTION_MACHINE.next_state(sub.status, "activate")
    sub.current_period_start = period_start
    sub.current_period_end = period_end
    sub.updated_at = utcnow()

    _record_activation(sub, sub.customer, sub.plan, actor_id)
    sync_customer_summary(sub.customer, status="active")
    return sub


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def create_subscription(
    tenant_id: int,
    customer_id: int,
    plan_id: int,
    *,
    seats: int = 1,
    status: str = "active",
    billing_cycle: str | None = None,
    coupon_id: int | None = None,
    linked_deal_id: str | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
) -> Subscription:
    """
    Create a subscription directly (outside invoice payment).

    MRR comes from the plan's pricing rows; there is no line-item fallback.
    The customer's standing discount and then the coupon are subtracted,
    and the coupon's redemption count goes up by one.

    Raises:
        NotFoundError: customer, plan or coupon outside the tenant
        PlanPricingNotFoundError: plan has no recurring price
        ValidationError: bad seats, status or billing cycle; unusable coupon
    """
    def _op():
        customer = _load_customer(tenant_id, customer_id)
        plan = load_plan(tenant_id, plan_id)
        return _create_subscription_locked(
            tenant_id=tenant_id,
            customer=customer,
            plan=plan,
            seats=seats,
            status=status,
            actor_id=actor_id,
            billing_cycle=billing_cycle,
            discounts_enabled=True,
            coupon_id=coupon_id,
            linked_deal_id=linked_deal_id,
            notes=notes,
        )

    sub = run_transition(_op)
    current_app.logger.info("Created subscription %s (tenant %s)", sub.subscription_number, tenant_id)
    return sub


def activate_subscription(
    tenant_id: int,
    subscription_id: int,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
    actor_id: str | None = None,
) -> Subscription:
    """
    Set a subscription active for the given period.

    Without explicit bounds the period starts now and lasts one billing cycle.
    """
    def _op():
        sub = _lock_subscription(tenant_id, subscription_id)
        start = period_start or utcnow()
        end = period_end or billing_period(start, sub.billing_cycle)[1]
        return _activate_locked(sub, start, end, actor_id)

    sub = run_transition(_op)
    current_app.logger.info("Activated subscription %s", sub.subscription_number)
    return sub


def change_subscription_status(
    tenant_id: int,
    subscription_id: int,
    new_status: str,
    actor_id: str | None = None,
) -> Subscription:
    """
    Move a subscription to active, paused, past_due or canceled.

    paused -> active is recorded as "resumed" rather than "activated".
    Changing to the current status is rejected.
    """
    def _op():
        sub = _lock_subscription(tenant_id, subscription_id)
        current = sub.status

        if new_status == current:
            raise InvalidTransitionError(
                f"Subscription {sub.subscription_number} is already {current}",
                entity_type="subscription",
                current_status=current,
            )
        if new_status not in _STATUS_EVENTS:
            raise InvalidTransitionError(
                f"Cannot change subscription to status '{new_status}'",
                entity_type="subscription",
                current_status=current,
            )

        event, activity_type = _STATUS_EVENTS[new_status]
        if current == "paused" and new_status == "active":
            event, activity_type = "resume", "resumed"

        sub.status = SUBSCRIPTION_MACHINE.next_state(current, event)
        now = utcnow()
        if sub.status == "active" and not (
            sub.current_period_start and sub.current_period_end
            and sub.current_period_end > sub.current_period_start
        ):
            sub.current_period_start, sub.current_period_end = billing_period(now, sub.billing_cycle)
        if sub.status == "canceled":
            sub.canceled_at = now
        sub.updated_at = now

        if activity_type == "activated":
            description = f"Subscription {sub.subscription_number} activated for {sub.customer.name}"
        else:
            description = f"Subscription {sub.subscription_number} {activity_type.replace('_', ' ')}"

        append_activity(
            tenant_id=tenant_id,
            entity_type="subscription",
            entity_id=sub.id,
            activity_type=activity_type,
            description=description,
            actor_id=actor_id,
            metadata={"old_status": current, "new_status": sub.status},
        )
        sync_customer_summary(sub.customer, status=sub.status)
        return sub

    sub = run_transition(_op)
    current_app.logger.info("Subscription %s status -> %s", sub.subscription_number, sub.status)
    return sub


def change_subscription_seats(
    tenant_id: int,
    subscription_id: int,
    new_seats: int,
    actor_id: str | None = None,
) -> Subscription:
    """
    Change the seat count and recompute MRR with the rule that produced it.

    A negotiated (fallback) price scales with the seat count. A catalog price
    is recomputed from the same row when the plan prices per seat; flat
    plans keep their MRR.

    Writes "seat_added" or "seat_removed" with the delta in the description.
    """
    if isinstance(new_seats, bool) or not isinstance(new_seats, int) or new_seats < 1:
        raise ValidationError("Seats must be a positive integer")

    def _op():
        sub = _lock_subscription(tenant_id, subscription_id)
        _ensure_not_canceled(sub, "change seats on")

        old_seats = sub.seats
        if new_seats == old_seats:
            raise ValidationError(f"Subscription {sub.subscription_number} already has {old_seats} seat(s)")

        old_mrr = sub.mrr_cents
        if sub.pricing_source == "fallback":
            sub.mrr_cents = scale_by_seats(old_mrr, old_seats, new_seats)
        else:
            rows = load_pricing_rows(sub.plan_id)
            if plan_has_seat_pricing(rows):
                base = reprice(rows, new_seats, sub.pricing_source).mrr_cents
                sub.mrr_cents = _discounted_mrr(sub, base, sub.plan_id)
        sub.seats = new_seats
        sub.updated_at = utcnow()

        delta = new_seats - old_seats
        if delta > 0:
            activity_type = "seat_added"
            description = f"Added {delta} seat(s) to subscription {sub.subscription_number}"
        else:
            activity_type = "seat_removed"
            description = f"Removed {-delta} seat(s) from subscription {sub.subscription_number}"

        append_activity(
            tenant_id=tenant_id,
            entity_type="subscription",
            entity_id=sub.id,
            activity_type=activity_type,
            description=description,
            actor_id=actor_id,
            metadata={
                "old_seats": old_seats,
                "new_seats": new_seats,
                "old_mrr_cents": old_mrr,
                "new_mrr_cents": sub.mrr_cents,
            },
        )
        return sub

    sub = run_transition(_op)
    current_app.logger.info("Subscription %s seats -> %s", sub.subscription_number, sub.seats)
    return sub


def change_subscription_plan(
    tenant_id: int,
    subscription_id: int,
    new_plan_id: int,
    actor_id: str | None = None,
) -> Subscription:
    """
    Move a subscription to another plan of the same tenant and recompute MRR.

    The billing cycle follows the new plan's price (a yearly-only plan makes
    the subscription yearly); the current period is left as it is and the
    next activation uses the new cycle.

    Raises:
        NotFoundError: plan outside the tenant
        PlanPricingNotFoundError: new plan has no recurring price
    """
    def _op():
        sub = _lock_subscription(tenant_id, subscription_id)
        _ensure_not_canceled(sub, "change plan on")

        new_plan = load_plan(tenant_id, new_plan_id)
        if new_plan.id == sub.plan_id:
            raise ValidationError(f"Subscription {sub.subscription_number} is already on plan '{new_plan.name}'")

        old_plan = sub.plan
        old_mrr = sub.mrr_cents
        old_cycle = sub.billing_cycle
        resolution = resolve_pricing(load_pricing_rows(new_plan.id), sub.seats)

        sub.plan_id = new_plan.id
        sub.plan = new_plan
        sub.mrr_cents = _discounted_mrr(sub, resolution.mrr_cents, new_plan.id)
        sub.pricing_source = resolution.source
        sub.billing_cycle = resolution.billing_cycle
        sub.updated_at = utcnow()

        old_name = old_plan.name if old_plan is not None else "Unknown"
        append_activity(
            tenant_id=tenant_id,
            entity_type="subscription",
            entity_id=sub.id,
            activity_type="plan_changed",
            description=f"Changed plan from {old_name} to {new_plan.name}",
            actor_id=actor_id,
            metadata={
                "old_plan": old_name,
                "new_plan": new_plan.name,
                "old_mrr_cents": old_mrr,
                "new_mrr_cents": sub.mrr_cents,
                "old_billing_cycle": old_cycle,
                "new_billing_cycle": sub.billing_cycle,
            },
        )
        sync_customer_summary(sub.customer, plan_name=new_plan.name)
        return sub

    sub = run_transition(_op)
    current_app.logger.info("Subscription %s plan -> %s", sub.subscription_number, sub.plan_id)
    return sub


def update_subscription_notes(
    tenant_id: int,
    subscription_id: int,
    notes: str | None,
    actor_id: str | None = None,
) -> Subscription:
    """Replace the free-text notes. Allowed in every status; writes "updated"."""
    def _op():
        sub = _lock_subscription(tenant_id, subscription_id)
        sub.notes = notes
        sub.updated_at = utcnow()
        append_activity(
            tenant_id=tenant_id,
            entity_type="subscription",
            entity_id=sub.id,
            activity_type="updated",
            description=f"Subscription {sub.subscription_number} updated",
            actor_id=actor_id,
            metadata={"fields": ["notes"]},
        )
        return sub

    return run_transition(_op)


# =============================================================================
# READS
# =============================================================================

def get_subscription(tenant_id: int, subscription_id: int) -> Subscription:
    sub = db.session.query(Subscription).filter_by(id=subscription_id, tenant_id=tenant_id).first()
    if sub is None:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    return sub


def list_subscriptions(
    tenant_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
) -> list[Subscription]:
    query = db.session.query(Subscription).filter_by(tenant_id=tenant_id)
    if status:
        query = query.filter(Subscription.status == status)
    if customer_id is not None:
        query = query.filter(Subscription.customer_id == customer_id)
    return query.order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()
