# backend/billing/routes/invoices.py
"""
Invoice API Routes

- GET  /api/tenant/:tenant/invoices                - List invoices (status, customer_id filters)
- POST /api/tenant/:tenant/invoices                - Create a standalone draft invoice
- GET  /api/tenant/:tenant/invoices/:id            - Get one invoice
- POST /api/tenant/:tenant/invoices/:id/finalize   - draft -> pending
- POST /api/tenant/:tenant/invoices/:id/pay        - -> paid; activates/creates subscriptions
- POST /api/tenant/:tenant/invoices/:id/cancel     - -> canceled
- POST /api/tenant/:tenant/invoices/mark-overdue   - Overdue sweep

Invoices are never deleted.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import BillingError
from ..services import invoice_service
from ..validation import json_body, optional_datetime, optional_int, optional_str, required_int


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/tenant/<tenant>/invoices")


@invoices_bp.get("")
@require_tenant
def list_invoices_route():
    try:
        invoices = invoice_service.list_invoices(
            g.tenant_id,
            status=request.args.get("status"),
            customer_id=optional_int(request.args.to_dict(), "customer_id"),
        )
        return jsonify({"invoices": [inv.to_dict() for inv in invoices]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("")
@require_tenant
def create_invoice_route():
    """
    Create a standalone draft invoice.

    Request body:
        {
            "customer_id": 1,
            "line_items": [...],
            "tax_cents": 0,
            "issue_date": "...", "due_date": "...",
            "subscription_id": 7,
            "currency": "USD", "notes": "..."
        }
    """
    try:
        payload = json_body(request)
        invoice = invoice_service.create_invoice(
            g.tenant_id,
            required_int(payload, "customer_id"),
            payload.get("line_items"),
            tax_cents=payload.get("tax_cents", 0),
            currency=optional_str(payload, "currency"),
            issue_date=optional_datetime(payload, "issue_date"),
            due_date=optional_datetime(payload, "due_date"),
            subscription_id=optional_int(payload, "subscription_id"),
            notes=optional_str(payload, "notes"),
            actor_id=g.actor_id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_tenant
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.tenant_id, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/finalize")
@require_tenant
def finalize_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.finalize_invoice(g.tenant_id, invoice_id, actor_id=g.actor_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalize invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/pay")
@require_tenant
def pay_invoice_route(invoice_id: int):
    """
    Mark an invoice paid.

    Response:
        {
            "invoice": {...},          // status=paid
            "subscriptions": [...]     // activated or created subscriptions
        }

    Error responses:
        409: already paid, canceled, or lost a concurrent race
        422: a plan line item has no recurring pricing
    """
    try:
        outcome = invoice_service.pay_invoice(g.tenant_id, invoice_id, actor_id=g.actor_id)
        return jsonify(outcome.to_dict()), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to pay invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_tenant
def cancel_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.cancel_invoice(g.tenant_id, invoice_id, actor_id=g.actor_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/mark-overdue")
@require_tenant
def mark_overdue_route():
    try:
        payload = json_body(request)
        invoices = invoice_service.mark_overdue_invoices(
            g.tenant_id, as_of=optional_datetime(payload, "as_of"), actor_id=g.actor_id
        )
        return jsonify({"overdue": [inv.to_dict() for inv in invoices]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark invoices overdue")
        return jsonify({"error": "Internal server error"}), 500
