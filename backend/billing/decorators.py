# Overview: Request decorators for tenant-scoped API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Tenant


ACTOR_HEADER = "X-Actor-Id"


def require_tenant(f):
    """
    Resolve the tenant from the URL slug and the acting principal from the request.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant: The active Tenant row
    - g.tenant_id: Its id; every service call is scoped by it
    - g.actor_id: Principal identity set by the upstream auth layer

    Authentication happens upstream; this layer trusts X-Actor-Id as given.

    Returns 401 without an actor, 404 for an unknown or inactive tenant.
    """
    @wraps(f)
    def decorated_function(tenant, *args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            return jsonify({"error": "Authentication required"}), 401

        row = db.session.query(Tenant).filter_by(slug=tenant).first()
        if row is None or not row.is_active:
            return jsonify({"error": "Tenant not found"}), 404

        g.tenant = row
        g.tenant_id = row.id
        g.actor_id = actor_id

        return f(*args, **kwargs)

    return decorated_function
