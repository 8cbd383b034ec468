# backend/billing/routes/activity.py
"""
Activity trail read API.

- GET /api/tenant/:tenant/activity/:entity_type/:id - Entries for one quote, invoice or subscription

Entries are returned oldest first. There is no write endpoint: entries are
only produced by lifecycle transitions.
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import activity_service
from ..services.activity_service import ENTITY_TYPES


activity_bp = Blueprint("activity", __name__, url_prefix="/api/tenant/<tenant>/activity")


@activity_bp.get("/<entity_type>/<int:entity_id>")
@require_tenant
def list_activity_route(entity_type: str, entity_id: int):
    if entity_type not in ENTITY_TYPES:
        return jsonify({"error": f"Unknown entity type '{entity_type}'"}), 400
    try:
        entries = activity_service.list_activity(g.tenant_id, entity_type, entity_id)
        return jsonify({"activity": [entry.to_dict() for entry in entries]}), 200
    except Exception:
        current_app.logger.exception("Failed to list activity")
        return jsonify({"error": "Internal server error"}), 500
