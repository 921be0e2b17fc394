# backend/stashbook/routes/system.py
"""
System health endpoint.

Reports database reachability plus ledger row counts, and whether the
notification relay is configured, for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Container, DepositRecord, Product, StockMovement
from stashbook.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        container_count = db.session.query(Container).count()
        movement_count = db.session.query(StockMovement).count()
        deposit_count = db.session.query(DepositRecord).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "containers": container_count,
                "movements": movement_count,
                "deposits": deposit_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_notification_relay() -> dict:
    if current_app.config.get("NOTIFY_RELAY_URL"):
        return {"status": "healthy", "configured": True}
    # Deposits still work; notifications are skipped
    return {"status": "degraded", "configured": False}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (relay not configured)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    relay_health = check_notification_relay()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif relay_health["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "notification_relay": relay_health,
        }
    }

    return response, http_status
