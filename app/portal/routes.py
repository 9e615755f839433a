from flask import Blueprint, current_app

from app.portal.utils import isoformat, utcnow

bp = Blueprint("routes", __name__)


@bp.get("/api/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {
        "status": "ok",
        "timestamp": isoformat(utcnow()),
        "region": current_app.config.get("PORTAL_REGION") or "global",
    }


@bp.get("/healthz")
def healthz():
    """
    Liveness check for load balancers. Never touches the database.
    """
    return "ok", 200
