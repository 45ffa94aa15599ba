# backend/authnet/routes/system.py
"""
System health endpoint.

Reports database reachability and row counts for the tables the
authorization network depends on.
"""

import time
from flask import Blueprint, current_app

from ..extensions import db
from ..models import AuthorizationNode, AuthorizationRequest, CatalogProduct, Order
from ..models.authorization import REQUEST_STATUS_PENDING
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """Run cheap counts against each core table."""
    start_time = time.time()
    try:
        details = {
            "catalog_products": db.session.query(CatalogProduct).count(),
            "authorizations": db.session.query(AuthorizationNode).count(),
            "pending_requests": db.session.query(AuthorizationRequest)
            .filter_by(status=REQUEST_STATUS_PENDING)
            .count(),
            "orders": db.session.query(Order).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database check failed
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }
    return response, 200 if healthy else 503
