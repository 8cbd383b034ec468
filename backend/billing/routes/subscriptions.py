# backend/billing/routes/subscriptions.py
"""
Subscription API Routes

- GET   /api/tenant/:tenant/subscriptions               - List subscriptions
- POST  /api/tenant/:tenant/subscriptions               - Create a subscription directly
- GET   /api/tenant/:tenant/subscriptions/:id           - Get one subscription
- PATCH /api/tenant/:tenant/subscriptions/:id           - Change status, seats, plan or notes (one per request)
- POST  /api/tenant/:tenant/subscriptions/:id/activate  - Activate for a billing period

MRR is always recomputed server-side; it is never accepted from the body.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import BillingError, ValidationError
from ..services import subscription_service
from ..validation import json_body, optional_datetime, optional_int, optional_str, required_int


subscriptions_bp = Blueprint("subscriptions", __name__, url_prefix="/api/tenant/<tenant>/subscriptions")

_MUTABLE_FIELDS = ("status", "seats", "plan_id", "notes")


@subscriptions_bp.get("")
@require_tenant
def list_subscriptions_route():
    try:
        subs = subscription_service.list_subscriptions(
            g.tenant_id,
            status=request.args.get("status"),
            customer_id=optional_int(request.args.to_dict(), "customer_id"),
        )
        return jsonify({"subscriptions": [s.to_dict() for s in subs]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list subscriptions")
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.post("")
@require_tenant
def create_subscription_route():
    """
    Request body:
        {
            "customer_id": 1, "plan_id": 2,
            "seats": 1, "status": "active" | "trial",
            "billing_cycle": "monthly" | "yearly",
            "coupon_id": 4, "linked_deal_id": "...", "notes": "..."
        }
    """
    try:
        payload = json_body(request)
        sub = subscription_service.create_subscription(
            g.tenant_id,
            required_int(payload, "customer_id"),
            required_int(payload, "plan_id"),
            seats=optional_int(payload, "seats", 1),
            status=optional_str(payload, "status", "active"),
            billing_cycle=optional_str(payload, "billing_cycle"),
            coupon_id=optional_int(payload, "coupon_id"),
            linked_deal_id=optional_str(payload, "linked_deal_id"),
            notes=optional_str(payload, "notes"),
            actor_id=g.actor_id,
        )
        return jsonify({"subscription": sub.to_dict()}), 201
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create subscription")
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.get("/<int:subscription_id>")
@require_tenant
def get_subscription_route(subscription_id: int):
    try:
        sub = subscription_service.get_subscription(g.tenant_id, subscription_id)
        return jsonify({"subscription": sub.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get subscription")
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.patch("/<int:subscription_id>")
@require_tenant
def update_subscription_route(subscription_id: int):
    """
    Apply exactly one change: {"status": ...}, {"seats": ...}, {"plan_id": ...} or {"notes": ...}.

    Each change is its own transition with its own activity entry.
    """
    try:
        payload = json_body(request)
        present = [key for key in _MUTABLE_FIELDS if key in payload]
        if len(present) != 1:
            raise ValidationError("Provide exactly one of: status, seats, plan_id, notes")

        field = present[0]
        if field == "status":
            status = optional_str(payload, "status")
            if not status:
                raise ValidationError("status is required")
            sub = subscription_service.change_subscription_status(
                g.tenant_id, subscription_id, status, actor_id=g.actor_id
            )
        elif field == "seats":
            sub = subscription_service.change_subscription_seats(
                g.tenant_id, subscription_id, required_int(payload, "seats"), actor_id=g.actor_id
            )
        elif field == "notes":
            sub = subscription_service.update_subscription_notes(
                g.tenant_id, subscription_id, optional_str(payload, "notes"), actor_id=g.actor_id
            )
        else:
            sub = subscription_service.change_subscription_plan(
                g.tenant_id, subscription_id, required_int(payload, "plan_id"), actor_id=g.actor_id
            )
        return jsonify({"subscription": sub.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update subscription")
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.post("/<int:subscription_id>/activate")
@require_tenant
def activate_subscription_route(subscription_id: int):
    """Request body (optional): {"period_start": "...", "period_end": "..."}"""
    try:
        payload = json_body(request)
        sub = subscription_service.activate_subscription(
            g.tenant_id,
            subscription_id,
            period_start=optional_datetime(payload, "period_start"),
            period_end=optional_datetime(payload, "period_end"),
            actor_id=g.actor_id,
        )
        return jsonify({"subscription": sub.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to activate subscription")
        return jsonify({"error": "Internal server error"}), 500
