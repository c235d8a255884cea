# backend/warehouse/routes/system.py
"""
System health endpoint.

Reports store connectivity and a few ledger counters for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import LedgerRecord, Location, Pallet, PALLET_STATUS_ACTIVE
from warehouse.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        location_count = db.session.query(Location).count()
        active_pallets = db.session.query(Pallet).filter(Pallet.status == PALLET_STATUS_ACTIVE).count()
        last_sequence = db.session.query(func.max(LedgerRecord.sequence_id)).scalar()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "locations": location_count,
                "active_pallets": active_pallets,
                "last_sequence_id": last_sequence,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: store reachable
    - 503: store unreachable
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "duplicate_scan_window_seconds": current_app.config["DUPLICATE_SCAN_WINDOW_SECONDS"],
        "checks": {
            "database": database_health,
        }
    }

    return response, (200 if healthy else 503)
