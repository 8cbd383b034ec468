# backend/billing/routes/system.py
"""
System health and version endpoints.

Provides health checks for the database and the lifecycle tables, and
version information for deployment debugging.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..services.lifecycle_service import StateMachineDefinitionError, validate_state_machines
from billing.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a trivial round trip."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_lifecycle_health() -> dict:
    """Re-validate the transition tables against the running configuration."""
    try:
        validate_state_machines(current_app.config.get("ALLOW_ACCEPT_EXPIRED_QUOTES", False))
        return {"status": "healthy"}
    except StateMachineDefinitionError as e:
        return {"status": "unhealthy", "error": str(e)}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    lifecycle_health = check_lifecycle_health()

    all_checks = [database_health, lifecycle_health]
    healthy = all(check["status"] == "healthy" for check in all_checks)

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "lifecycle": lifecycle_health,
        },
    }
    return response, 200 if healthy else 503


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information. Never exposes secrets or paths."""
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
