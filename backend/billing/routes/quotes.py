# backend/billing/routes/quotes.py
"""
Quote API Routes

- GET    /api/tenant/:tenant/quotes                 - List quotes (status, customer_id filters)
- POST   /api/tenant/:tenant/quotes                 - Create a draft quote
- GET    /api/tenant/:tenant/quotes/:id             - Get one quote
- PUT    /api/tenant/:tenant/quotes/:id             - Edit a draft quote
- DELETE /api/tenant/:tenant/quotes/:id             - Soft-delete a draft or rejected quote
- POST   /api/tenant/:tenant/quotes/:id/send        - draft -> sent
- POST   /api/tenant/:tenant/quotes/:id/accept      - sent -> converted (creates the invoice)
- POST   /api/tenant/:tenant/quotes/:id/reject      - sent/expired -> rejected
- POST   /api/tenant/:tenant/quotes/:id/revise      - New draft revision
- POST   /api/tenant/:tenant/quotes/expire          - Expiry sweep

SECURITY:
- Tenant comes from the URL slug, actor from the upstream auth layer (X-Actor-Id)
- Totals in request bodies are only checked, never stored
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import BillingError
from ..services import quote_service
from ..validation import MISSING, json_body, optional_datetime, optional_int, optional_str, required_int


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/tenant/<tenant>/quotes")


@quotes_bp.get("")
@require_tenant
def list_quotes_route():
    try:
        customer_id = optional_int(request.args.to_dict(), "customer_id")
        quotes = quote_service.list_quotes(
            g.tenant_id,
            status=request.args.get("status"),
            customer_id=customer_id,
        )
        return jsonify({"quotes": [q.to_dict() for q in quotes]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list quotes")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("")
@require_tenant
def create_quote_route():
    """
    Create a draft quote.

    Request body:
        {
            "customer_id": 1,
            "line_items": [{"description": "...", "quantity": 2, "unit_price_cents": 5000}],
            "tax_cents": 0,
            "currency": "USD",
            "valid_until": "2024-02-01T00:00:00Z",
            "deal_id": "...", "plan_id": 3, "notes": "..."
        }
    """
    try:
        payload = json_body(request)
        quote = quote_service.create_quote(
            g.tenant_id,
            required_int(payload, "customer_id"),
            payload.get("line_items"),
            tax_cents=payload.get("tax_cents", 0),
            currency=optional_str(payload, "currency"),
            valid_until=optional_datetime(payload, "valid_until"),
            deal_id=optional_str(payload, "deal_id"),
            plan_id=optional_int(payload, "plan_id"),
            notes=optional_str(payload, "notes"),
            actor_id=g.actor_id,
        )
        return jsonify({"quote": quote.to_dict()}), 201
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.get("/<int:quote_id>")
@require_tenant
def get_quote_route(quote_id: int):
    try:
        quote = quote_service.get_quote(g.tenant_id, quote_id)
        return jsonify({"quote": quote.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.put("/<int:quote_id>")
@require_tenant
def update_quote_route(quote_id: int):
    """Edit a draft quote. Only keys present in the body are changed."""
    try:
        payload = json_body(request)
        changes = {}
        if "line_items" in payload:
            changes["line_items"] = payload["line_items"]
        if "tax_cents" in payload:
            changes["tax_cents"] = payload["tax_cents"]
        if "customer_id" in payload:
            changes["customer_id"] = required_int(payload, "customer_id")
        if "plan_id" in payload:
            changes["plan_id"] = optional_int(payload, "plan_id")
        if "valid_until" in payload:
            changes["valid_until"] = optional_datetime(payload, "valid_until")
        for key in ("deal_id", "notes"):
            value = optional_str(payload, key, MISSING)
            if value is not MISSING:
                changes[key] = value

        quote = quote_service.update_quote(g.tenant_id, quote_id, actor_id=g.actor_id, **changes)
        return jsonify({"quote": quote.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.delete("/<int:quote_id>")
@require_tenant
def delete_quote_route(quote_id: int):
    try:
        quote_service.delete_quote(g.tenant_id, quote_id, actor_id=g.actor_id)
        return jsonify({"message": f"Quote {quote_id} deleted"}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/<int:quote_id>/send")
@require_tenant
def send_quote_route(quote_id: int):
    try:
        quote = quote_service.send_quote(g.tenant_id, quote_id, actor_id=g.actor_id)
        return jsonify({"quote": quote.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to send quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/<int:quote_id>/accept")
@require_tenant
def accept_quote_route(quote_id: int):
    """
    Accept a sent quote; responds with the converted quote and its new draft invoice.

    Request body (optional):
        {"issue_date": "...", "due_date": "..."}
    """
    try:
        payload = json_body(request)
        quote, invoice = quote_service.accept_quote(
            g.tenant_id,
            quote_id,
            issue_date=optional_datetime(payload, "issue_date"),
            due_date=optional_datetime(payload, "due_date"),
            actor_id=g.actor_id,
        )
        return jsonify({"quote": quote.to_dict(), "invoice": invoice.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to accept quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/<int:quote_id>/reject")
@require_tenant
def reject_quote_route(quote_id: int):
    try:
        payload = json_body(request)
        quote = quote_service.reject_quote(
            g.tenant_id, quote_id, actor_id=g.actor_id, reason=optional_str(payload, "reason")
        )
        return jsonify({"quote": quote.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/<int:quote_id>/revise")
@require_tenant
def revise_quote_route(quote_id: int):
    try:
        quote = quote_service.revise_quote(g.tenant_id, quote_id, actor_id=g.actor_id)
        return jsonify({"quote": quote.to_dict()}), 201
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to revise quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/expire")
@require_tenant
def expire_quotes_route():
    try:
        payload = json_body(request)
        quotes = quote_service.expire_quotes(
            g.tenant_id, as_of=optional_datetime(payload, "as_of"), actor_id=g.actor_id
        )
        return jsonify({"expired": [q.to_dict() for q in quotes]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to expire quotes")
        return jsonify({"error": "Internal server error"}), 500
