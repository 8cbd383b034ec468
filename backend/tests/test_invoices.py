# Overview: Pytest coverage for invoice lifecycle and payment-driven subscription activation.

"""
Invoice Payment Tests

WHY: Payment is where recurring revenue starts. These tests pin down that
the invoice, its subscriptions, the customer summary and the audit trail
move together, and that a failed payment leaves nothing behind.
"""

from datetime import datetime

import pytest

from billing.errors import (
    AlreadyPaidError,
    CanceledInvoiceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from billing.models import ActivityLogEntry, CustomerOrganization, Invoice, Subscription
from billing.services import invoice_service, subscription_service
from conftest import ACTOR, activity_types, line


def _invoice(tenant, customer, items=None, **kwargs):
    return invoice_service.create_invoice(
        tenant.id, customer.id, items or [line("Consulting", 2, 7500)], actor_id=ACTOR, **kwargs
    )


class TestCreateInvoice:
    def test_create_and_finalize(self, db_session, tenant_a, customer_a):
        invoice = _invoice(tenant_a, customer_a, tax_cents=1000, issue_date=datetime(2024, 5, 1))
        assert invoice.invoice_number == "INV-ACME-1001"
        assert invoice.status == "draft"
        assert invoice.total_cents == 16000
        assert invoice.due_date == datetime(2024, 5, 31)

        invoice = invoice_service.finalize_invoice(tenant_a.id, invoice.id, actor_id=ACTOR)
        assert invoice.status == "pending"
        assert activity_types("invoice", invoice.id) == ["created", "finalized"]

    def test_due_before_issue(self, db_session, tenant_a, customer_a):
        with pytest.raises(ValidationError):
            _invoice(tenant_a, customer_a, issue_date=datetime(2024, 5, 1), due_date=datetime(2024, 4, 1))

    def test_subscription_must_belong_to_customer(self, db_session, tenant_a, customer_a, pro_plan):
        other = CustomerOrganization(tenant_id=tenant_a.id, name="Soylent")
        db_session.add(other)
        db_session.commit()
        sub = subscription_service.create_subscription(tenant_a.id, other.id, pro_plan.id)

        with pytest.raises(ValidationError):
            _invoice(tenant_a, customer_a, subscription_id=sub.id)

    def test_subscription_of_other_tenant(self, db_session, tenant_a, customer_a, customer_b, foreign_plan):
        sub = subscription_service.create_subscription(customer_b.tenant_id, customer_b.id, foreign_plan.id)
        with pytest.raises(NotFoundError):
            _invoice(tenant_a, customer_a, subscription_id=sub.id)


class TestPayLinkedSubscription:
    def test_pay_activates_linked_trial(self, db_session, tenant_a, customer_a, pro_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id, status="trial")
        invoice = _invoice(tenant_a, customer_a, subscription_id=sub.id)

        outcome = invoice_service.pay_invoice(tenant_a.id, invoice.id, actor_id=ACTOR)

        assert outcome.invoice.status == "paid"
        assert outcome.invoice.paid_at is not None
        assert [s.id for s in outcome.subscriptions] == [sub.id]

        sub = db_session.get(Subscription, sub.id)
        assert sub.status == "active"
        assert sub.current_period_end > sub.current_period_start
        assert activity_types("subscription", sub.id) == ["created", "activated"]
        assert activity_types("invoice", invoice.id) == ["created", "invoice_paid"]
        assert db_session.get(CustomerOrganization, customer_a.id).subscription_status == "active"

    def test_canceled_linked_subscription_rolls_back_payment(self, db_session, tenant_a, customer_a, pro_plan):
        sub = subscription_service.create_subscription(tenant_a.id, customer_a.id, pro_plan.id)
        invoice = _invoice(tenant_a, customer_a, subscription_id=sub.id)
        subscription_service.change_subscription_status(tenant_a.id, sub.id, "canceled")

        with pytest.raises(InvalidTransitionError):
            invoice_service.pay_invoice(tenant_a.id, invoice.id)

        assert db_session.get(Invoice, invoice.id).status == "draft"
        assert "invoice_paid" not in activity_types("invoice", invoice.id)


class TestPayFromPlanLineItems:
    def test_single_plan_creates_and_links_subscription(self, db_session, tenant_a, customer_a, team_plan):
        invoice = _invoice(tenant_a, customer_a, [line("Team seats", 3, 1000, plan_id=team_plan.id)])

        outcome = invoice_service.pay_invoice(tenant_a.id, invoice.id, actor_id=ACTOR)

        assert len(outcome.subscriptions) == 1
        sub = outcome.subscriptions[0]
        assert sub.subscription_number == "SUB-1000"
        assert sub.status == "active"
        assert sub.seats == 3
        assert sub.mrr_cents == 3000
        assert outcome.invoice.subscription_id == sub.id

        customer = db_session.get(CustomerOrganization, customer_a.id)
        assert customer.subscription_plan == "Team"
        assert customer.subscription_status == "active"

        entry = (
            db_session.query(ActivityLogEntry)
            .filter_by(entity_type="subscription", entity_id=sub.id, activity_type="created")
            .one()
        )
        assert entry.payload["invoice_id"] == invoice.id

    def test_two_plans_create_two_unlinked_subscriptions(
        self, db_session, tenant_a, customer_a, pro_plan, team_plan
    ):
        invoice = _invoice(
            tenant_a,
            customer_a,
            [
                line("Pro", 1, 4900, plan_id=pro_plan.id),
                line("Onboarding", 1, 20000),
                line("Team seats", 2, 1000, plan_id=team_plan.id),
            ],
        )

        outcome = invoice_service.pay_invoice(tenant_a.id, invoice.id)

        assert [s.plan_id for s in outcome.subscriptions] == [pro_plan.id, team_plan.id]
        assert outcome.invoice.subscription_id is None
        # Last subscription touched wins the summary
        assert db_session.get(CustomerOrganization, customer_a.id).subscription_plan == "Team"

    def test_plan_without_price_uses_line_total(self, db_session, tenant_a, customer_a):
        from conftest import make_plan

        bespoke = make_plan(db_session, tenant_a, "Bespoke")
        invoice = _invoice(tenant_a, customer_a, [line("Bespoke", 1, 25000, plan_id=bespoke.id)])

        sub = invoice_service.pay_invoice(tenant_a.id, invoice.id).subscriptions[0]
        assert sub.mrr_cents == 25000

    def test_invoice_without_plans_creates_nothing(self, db_session, tenant_a, customer_a):
        invoice = _invoice(tenant_a, customer_a)
        outcome = invoice_service.pay_invoice(tenant_a.id, invoice.id)
        assert outcome.subscriptions == []
        assert db_session.query(Subscription).count() == 0


class TestPaymentGuards:
    def test_second_payment_fails_and_writes_nothing(self, db_session, tenant_a, customer_a):
        invoice = _invoice(tenant_a, customer_a)
        invoice_service.pay_invoice(tenant_a.id, invoice.id)
        before = db_session.query(ActivityLogEntry).count()
        subs_before = db_session.query(Subscription).count()

        with pytest.raises(AlreadyPaidError) as exc:
            invoice_service.pay_invoice(tenant_a.id, invoice.id)

        assert exc.value.current_status == "paid"
        assert db_session.query(ActivityLogEntry).count() == before
        assert db_session.query(Subscription).count() == subs_before

    def test_canceled_invoice_cannot_be_paid(self, db_session, tenant_a, customer_a):
        invoice = _invoice(tenant_a, customer_a)
        invoice_service.cancel_invoice(tenant_a.id, invoice.id, actor_id=ACTOR)

        with pytest.raises(CanceledInvoiceError):
            invoice_service.pay_invoice(tenant_a.id, invoice.id)
        assert activity_types("invoice", invoice.id) == ["created", "canceled"]

    def test_paid_invoice_cannot_be_canceled(self, db_session, tenant_a, customer_a):
        invoice = _invoice(tenant_a, customer_a)
        invoice_service.pay_invoice(tenant_a.id, invoice.id)

        with pytest.raises(AlreadyPaidError):
            invoice_service.cancel_invoice(tenant_a.id, invoice.id)

    def test_pay_other_tenant_invoice(self, db_session, tenant_a, tenant_b, customer_a):
        invoice = _invoice(tenant_a, customer_a)
        with pytest.raises(NotFoundError):
            invoice_service.pay_invoice(tenant_b.id, invoice.id)


def test_mark_overdue_sweep(db_session, tenant_a, customer_a):
    due_soon = _invoice(tenant_a, customer_a, issue_date=datetime(2024, 1, 1), due_date=datetime(2024, 1, 31))
    later = _invoice(tenant_a, customer_a, issue_date=datetime(2024, 1, 1), due_date=datetime(2024, 6, 30))
    draft = _invoice(tenant_a, customer_a, issue_date=datetime(2024, 1, 1), due_date=datetime(2024, 1, 2))
    for invoice in (due_soon, later):
        invoice_service.finalize_invoice(tenant_a.id, invoice.id)

    marked = invoice_service.mark_overdue_invoices(tenant_a.id, as_of=datetime(2024, 2, 15), actor_id="system")

    assert [i.id for i in marked] == [due_soon.id]
    assert db_session.get(Invoice, later.id).status == "pending"
    assert db_session.get(Invoice, draft.id).status == "draft"
    assert activity_types("invoice", due_soon.id) == ["created", "finalized", "overdue"]

    # Overdue invoices can still be paid
    assert invoice_service.pay_invoice(tenant_a.id, due_soon.id).invoice.status == "paid"
