# devbox/api/health.py
"""
Health check endpoints.
"""
from datetime import datetime, timezone
from fastapi import APIRouter

from devbox import db
from devbox.sandbox import get_orchestrator

router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def healthz():
    """Simple health check."""
    return {"ok": True, "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/api/health")
async def api_health():
    """API health check, including cluster and database reachability."""
    orchestrator = get_orchestrator()
    cluster = await orchestrator.backend.ping()
    database = {"connected": db.is_connected()}
    if not database["connected"] and db.get_connection_error():
        database["error"] = db.get_connection_error()

    return {
        "status": "healthy" if cluster.get("reachable") else "degraded",
        "cluster": cluster,
        "database": database,
        "subscribers": orchestrator.registry.connection_count(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
