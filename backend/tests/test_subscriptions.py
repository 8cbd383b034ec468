# Overview: Pytest coverage for subscription lifecycle, seats, plans and billing periods.

from datetime import datetime, timedelta

import pytest

from billing.errors import InvalidTransitionError, NotFoundError, PlanPricingNotFoundError, ValidationError
from billing.models import ActivityLogEntry, Coupon, CustomerOrganization, Subscription
from billing.services import invoice_service, subscription_service
from billing.services.subscription_service import billing_period
from billing.time_utils import utcnow
from conftest import ACTOR, activity_types, line, make_plan


class TestBillingPeriod:
    def test_monthly(self):
        start, end = billing_period(datetime(2024, 1, 15), "monthly")
        assert start == datetime(2024, 1, 15)
        assert end == datetime(2024, 2, 15)

    def test_yearly(self):
        assert billing_period(datetime(2024, 1, 15), "yearly")[1] == datetime(2025, 1, 15)

    def test_month_end_clamps(self):
        assert billing_period(datetime(2024, 1, 31), "monthly")[1] == datetime(2024, 2, 29)
        assert billing_period(datetime(2023, 1, 31), "monthly")[1] == datetime(2023, 2, 28)

    def test_unknown_cycle(self):
        with pytest.raises(ValidationError):
            billing_period(datetime(2024, 1, 15), "weekly")


class TestCreateSubscription:
    def test_yearly_plan_mrr(self, db_session, tenant_a, customer_a, enterprise_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, enterprise_plan.id, actor_id=ACTOR)
        assert sub.subscription_number == "SUB-1000"
        assert sub.mrr_cents == 9900
        assert sub.billing_cycle == "yearly"
        assert sub.status == "active"
        assert activity_types("subscription", sub.id) == ["created", "activated"]

        customer = db_session.get(CustomerOrganization, customer_a.id)
        assert customer.subscription_plan == "Enterprise"
        assert customer.subscription_status == "active"

    def test_trial_summary_uses_trialing(self, db_session, tenant_a, customer_a, pro_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, status="trial")
        assert sub.status == "trial"
        assert activity_types("subscription", sub.id) == ["created"]
        assert db_session.get(CustomerOrganization, customer_a.id).subscription_status == "trialing"

    def test_seat_priced_plan(self, db_session, tenant_a, customer_a, team_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, team_plan.id, seats=10)
        assert sub.mrr_cents == 10000

    @pytest.mark.parametrize("status", ["paused", "canceled", "past_due"])
    def test_cannot_start_in_later_status(self, db_session, tenant_a, customer_a, pro_plan, status):
        with pytest.raises(ValidationError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, status=status)

    def test_plan_without_recurring_price(self, db_session, tenant_a, customer_a):
        one_time = make_plan(db_session, tenant_a, "Setup", {"interval": None, "amount_cents": 50000})
        with pytest.raises(PlanPricingNotFoundError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, one_time.id)
        assert db_session.query(Subscription).count() == 0

    def test_plan_of_other_tenant(self, db_session, tenant_a, customer_a, foreign_plan):
        with pytest.raises(NotFoundError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, foreign_plan.id)


class TestStatusChanges:
    @pytest.fixture
    def sub(self, db_session, tenant_a, customer_a, pro_plan):
        return subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)

    def test_pause_and_resume(self, db_session, tenant_a, customer_a, sub):
        sub = subscription_service.change_subscription_status(tenant_a.id, sub.id, "paused", actor_id=ACTOR)
        assert sub.status == "paused"
        assert db_session.get(CustomerOrganization, customer_a.id).subscription_status == "paused"

        sub = subscription_service.change_subscription_status(tenant_a.id, sub.id, "active", actor_id=ACTOR)
        assert sub.status == "active"
        assert activity_types("subscription", sub.id) == ["created", "activated", "paused", "resumed"]

        entry = (
            db_session.query(ActivityLogEntry)
            .filter_by(entity_id=sub.id, activity_type="resumed")
            .one()
        )
        assert entry.payload == {"old_status": "paused", "new_status": "active"}

    def test_cancel_is_terminal(self, db_session, tenant_a, customer_a, sub):
        sub = subscription_service.change_subscription_status(tenant_a.id, sub.id, "canceled")
        assert sub.canceled_at is not None
        assert db_session.get(CustomerOrganization, customer_a.id).subscription_status == "canceled"

        with pytest.raises(InvalidTransitionError) as exc:
            subscription_service.change_subscription_status(tenant_a.id, sub.id, "active")
        assert exc.value.current_status == "canceled"

        with pytest.raises(InvalidTransitionError):
            subscription_service.activate_subscription(tenant_a.id, sub.id)

    def test_same_status_is_rejected(self, db_session, tenant_a, sub):
        with pytest.raises(InvalidTransitionError):
            subscription_service.change_subscription_status(tenant_a.id, sub.id, "active")
        assert activity_types("subscription", sub.id) == ["created", "activated"]

    def test_cannot_return_to_trial(self, db_session, tenant_a, sub):
        with pytest.raises(InvalidTransitionError):
            subscription_service.change_subscription_status(tenant_a.id, sub.id, "trial")

    def test_past_due_can_be_reactivated(self, db_session, tenant_a, sub):
        subscription_service.change_subscription_status(tenant_a.id, sub.id, "past_due")
        sub = subscription_service.change_subscription_status(tenant_a.id, sub.id, "active")
        assert activity_types("subscription", sub.id)[-2:] == ["past_due", "activated"]

    def test_activate_with_explicit_period(self, db_session, tenant_a, customer_a, pro_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, status="trial")
        sub = subscription_service.activate_subscription(
            tenant_a.id, sub.id, period_start=datetime(2024, 1, 15), period_end=datetime(2024, 2, 15)
        )
        assert sub.status == "active"
        assert sub.current_period_start == datetime(2024, 1, 15)

    def test_activate_with_inverted_period(self, db_session, tenant_a, customer_a, pro_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, status="trial")
        with pytest.raises(ValidationError):
            subscription_service.activate_subscription(
                tenant_a.id, sub.id, period_start=datetime(2024, 2, 15), period_end=datetime(2024, 1, 15)
            )
        assert db_session.get(Subscription, sub.id).status == "trial"


class TestSeatsAndPlans:
    def test_seat_increase_recomputes_mrr(self, db_session, tenant_a, customer_a, team_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, team_plan.id, seats=10)

        sub = subscription_service.change_subscription_seats(tenant_a.id, sub.id, 15, actor_id=ACTOR)

        assert sub.seats == 15
        assert sub.mrr_cents == 15000
        entry = (
            db_session.query(ActivityLogEntry)
            .filter_by(entity_id=sub.id, activity_type="seat_added")
            .one()
        )
        assert entry.description == f"Added 5 seat(s) to subscription {sub.subscription_number}"

    def test_seat_decrease(self, db_session, tenant_a, customer_a, team_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, team_plan.id, seats=10)
        sub = subscription_service.change_subscription_seats(tenant_a.id, sub.id, 7)
        assert sub.mrr_cents == 7000
        assert activity_types("subscription", sub.id)[-1] == "seat_removed"

    def test_seats_on_flat_plan_keep_mrr(self, db_session, tenant_a, customer_a, pro_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)
        sub = subscription_service.change_subscription_seats(tenant_a.id, sub.id, 4)
        assert sub.seats == 4
        assert sub.mrr_cents == 4900

    @pytest.mark.parametrize("seats", [0, -3, 2.5, True])
    def test_invalid_seat_counts(self, db_session, tenant_a, customer_a, team_plan, seats):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, team_plan.id)
        with pytest.raises(ValidationError):
            subscription_service.change_subscription_seats(tenant_a.id, sub.id, seats)

    def test_seats_on_canceled_subscription(self, db_session, tenant_a, customer_a, team_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, team_plan.id)
        subscription_service.change_subscription_status(tenant_a.id, sub.id, "canceled")
        with pytest.raises(InvalidTransitionError):
            subscription_service.change_subscription_seats(tenant_a.id, sub.id, 5)

    def test_plan_change(self, db_session, tenant_a, customer_a, pro_plan, enterprise_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)

        sub = subscription_service.change_subscription_plan(tenant_a.id, sub.id, enterprise_plan.id, actor_id=ACTOR)

        assert sub.plan_id == enterprise_plan.id
        assert sub.mrr_cents == 9900
        assert sub.billing_cycle == "yearly"
        assert sub.pricing_source == "yearly_base"
        assert db_session.get(CustomerOrganization, customer_a.id).subscription_plan == "Enterprise"
        entry = (
            db_session.query(ActivityLogEntry)
            .filter_by(entity_id=sub.id, activity_type="plan_changed")
            .one()
        )
        assert entry.description == "Changed plan from Pro to Enterprise"
        assert entry.payload["old_billing_cycle"] == "monthly"
        assert entry.payload["new_billing_cycle"] == "yearly"

    def test_plan_change_to_same_plan(self, db_session, tenant_a, customer_a, pro_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)
        with pytest.raises(ValidationError):
            subscription_service.change_subscription_plan(tenant_a.id, sub.id, pro_plan.id)

    def test_plan_change_to_other_tenant_plan(self, db_session, tenant_a, customer_a, pro_plan, foreign_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)
        with pytest.raises(NotFoundError):
            subscription_service.change_subscription_plan(tenant_a.id, sub.id, foreign_plan.id)
        assert db_session.get(Subscription, sub.id).plan_id == pro_plan.id


    def test_next_activation_uses_new_cycle(self, db_session, tenant_a, customer_a, pro_plan, enterprise_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, status="trial")
        subscription_service.change_subscription_plan(tenant_a.id, sub.id, enterprise_plan.id)

        sub = subscription_service.activate_subscription(tenant_a.id, sub.id, period_start=datetime(2024, 1, 15))
        assert sub.current_period_end == datetime(2025, 1, 15)


def test_list_subscriptions_filters(db_session, tenant_a, tenant_b, customer_a, pro_plan):
    active = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)
    trial = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, status="trial")

    assert {s.id for s in subscription_service.list_subscriptions(tenant_a.id)} == {active.id, trial.id}
    assert [s.id for s in subscription_service.list_subscriptions(tenant_a.id, status="trial")] == [trial.id]
    assert subscription_service.list_subscriptions(tenant_b.id) == []


class TestNegotiatedPricing:
    @pytest.fixture
    def regional_team(self, db_session, tenant_a):
        """Only a regional monthly row: 5000 + 1000 per seat."""
        return make_plan(
            db_session, tenant_a, "Regional Team",
            {"pricing_type": "regional", "region": "EU", "interval": "monthly",
             "amount_cents": 5000, "per_seat_amount_cents": 1000},
        )

    def _paid_subscription(self, tenant, customer, plan):
        invoice = invoice_service.create_invoice(
            tenant.id, customer.id, [line("Team seats", 2, 20000, plan_id=plan.id)]
        )
        return invoice_service.pay_invoice(tenant.id, invoice.id).subscriptions[0]

    def test_seat_change_scales_invoiced_price(self, db_session, tenant_a, customer_a, regional_team):
        sub = self._paid_subscription(tenant_a, customer_a, regional_team)
        assert sub.mrr_cents == 40000
        assert sub.pricing_source == "fallback"

        sub = subscription_service.change_subscription_seats(tenant_a.id, sub.id, 3)
        assert sub.mrr_cents == 60000

        sub = subscription_service.change_subscription_seats(tenant_a.id, sub.id, 1)
        assert sub.mrr_cents == 20000

    def test_direct_regional_subscription_keeps_regional_row(
        self, db_session, tenant_a, customer_a, regional_team
    ):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, regional_team.id, seats=2)
        assert sub.mrr_cents == 7000

        sub = subscription_service.change_subscription_seats(tenant_a.id, sub.id, 4)
        assert sub.mrr_cents == 9000
        assert sub.pricing_source == "monthly_regional"


def _coupon(db_session, tenant, code="SAVE20", **overrides):
    values = {"discount_type": "percentage", "discount_value": 20, "status": "active"}
    values.update(overrides)
    coupon = Coupon(tenant_id=tenant.id, code=code, **values)
    db_session.add(coupon)
    db_session.commit()
    return coupon


class TestDiscounts:
    def test_percentage_coupon(self, db_session, tenant_a, customer_a, pro_plan):
        coupon = _coupon(db_session, tenant_a)

        sub = subscription_service.create_subscription(
            tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id, actor_id=ACTOR
        )

        assert sub.mrr_cents == 3920
        assert sub.coupon_id == coupon.id
        assert db_session.get(Coupon, coupon.id).redemption_count == 1
        entry = (
            db_session.query(ActivityLogEntry)
            .filter_by(entity_type="subscription", entity_id=sub.id, activity_type="created")
            .one()
        )
        assert entry.payload["base_mrr_cents"] == 4900
        assert entry.payload["coupon_discount_cents"] == 980
        assert entry.payload["coupon_code"] == "SAVE20"

    def test_customer_discount_then_coupon(self, db_session, tenant_a, customer_a, pro_plan):
        customer_a.discount_type = "fixed_amount"
        customer_a.discount_value = 500
        db_session.commit()
        coupon = _coupon(db_session, tenant_a, discount_value=10)

        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)

        # Both discounts are taken from the undiscounted 4900
        assert sub.mrr_cents == 4900 - 500 - 490

    def test_discount_never_goes_negative(self, db_session, tenant_a, customer_a, pro_plan):
        coupon = _coupon(db_session, tenant_a, discount_type="fixed_amount", discount_value=10000)
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)
        assert sub.mrr_cents == 0

    def test_free_months_coupon_keeps_mrr(self, db_session, tenant_a, customer_a, pro_plan):
        coupon = _coupon(db_session, tenant_a, discount_type="free_months", discount_value=2)
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)
        assert sub.mrr_cents == 4900

    def test_seat_change_reapplies_coupon(self, db_session, tenant_a, customer_a, team_plan):
        coupon = _coupon(db_session, tenant_a, discount_value=10)
        sub = subscription_service.create_subscription(
            tenant_a.id, customer_a.id, team_plan.id, seats=10, coupon_id=coupon.id
        )
        assert sub.mrr_cents == 9000

        sub = subscription_service.change_subscription_seats(tenant_a.id, sub.id, 15)
        assert sub.mrr_cents == 13500

    def test_unknown_coupon(self, db_session, tenant_a, customer_a, pro_plan):
        with pytest.raises(NotFoundError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=12345)
        assert db_session.query(Subscription).count() == 0

    def test_coupon_of_other_tenant(self, db_session, tenant_a, tenant_b, customer_a, pro_plan):
        coupon = _coupon(db_session, tenant_b)
        with pytest.raises(NotFoundError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": "inactive"},
            {"expires_at": datetime(2000, 1, 1)},
            {"max_redemptions": 1, "redemption_count": 1},
        ],
        ids=["inactive", "expired", "exhausted"],
    )
    def test_unusable_coupon(self, db_session, tenant_a, customer_a, pro_plan, overrides):
        coupon = _coupon(db_session, tenant_a, **overrides)
        before = coupon.redemption_count

        with pytest.raises(ValidationError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)

        assert db_session.query(Subscription).count() == 0
        assert db_session.get(Coupon, coupon.id).redemption_count == before

    def test_coupon_limited_to_other_plans(self, db_session, tenant_a, customer_a, pro_plan, team_plan):
        coupon = _coupon(db_session, tenant_a, applicable_plan_ids=[team_plan.id])
        with pytest.raises(ValidationError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)

    def test_last_redemption_slot(self, db_session, tenant_a, customer_a, pro_plan):
        coupon = _coupon(db_session, tenant_a, max_redemptions=1, expires_at=utcnow() + timedelta(days=30))

        subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)
        with pytest.raises(ValidationError):
            subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, coupon_id=coupon.id)
        assert db_session.get(Coupon, coupon.id).redemption_count == 1

    def test_paid_invoice_subscription_ignores_customer_discount(self, db_session, tenant_a, customer_a, pro_plan):
        customer_a.discount_type = "percentage"
        customer_a.discount_value = 50
        db_session.commit()
        invoice = invoice_service.create_invoice(tenant_a.id, customer_a.id, [line("Pro", 1, 4900, plan_id=pro_plan.id)])

        sub = invoice_service.pay_invoice(tenant_a.id, invoice.id).subscriptions[0]
        assert sub.mrr_cents == 4900


def test_notes_update_on_canceled_subscription(db_session, tenant_a, customer_a, pro_plan):
    sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)
    subscription_service.change_subscription_status(tenant_a.id, sub.id, "canceled")

    sub = subscription_service.update_subscription_notes(tenant_a.id, sub.id, "Churned: budget", actor_id=ACTOR)

    assert sub.notes == "Churned: budget"
    assert sub.status == "canceled"
    assert activity_types("subscription", sub.id)[-1] == "updated"
