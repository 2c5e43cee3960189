# app/routes/health.py
"""
Health check endpoints: liveness, readiness and database pool details.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.openai_service import openai_service_health

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "inbox-analysis-backend"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: database pool and model provider configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        latency_ms = round((time.time() - t0) * 1000, 1)

        checks["database"] = {"ok": is_healthy, "latency_ms": latency_ms}

        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "pool_utilization_percent": pool_stats.get("pool_utilization_percent", 0),
                }
            )
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

    except Exception as e:
        latency_ms = round((time.time() - t0) * 1000, 1)
        is_healthy = False
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": latency_ms,
        }

    log_health_check("database", is_healthy, latency_ms, checks["database"].get("error"))
    overall_ok = overall_ok and is_healthy

    # 2) OpenAI configuration (no tokens spent)
    openai_health = await openai_service_health()
    checks["openai"] = {
        "ok": openai_health["healthy"],
        "model": openai_health["configuration"]["model"],
    }
    if not openai_health["healthy"]:
        checks["openai"]["error"] = openai_health.get("error", "OpenAI not configured")
    overall_ok = overall_ok and openai_health["healthy"]

    checks["configuration"] = {
        "ok": bool(settings.SUPABASE_DB_URL),
        "environment": settings.environment,
    }
    overall_ok = overall_ok and checks["configuration"]["ok"]

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
