# app/routes/health.py
"""
Health check endpoints: liveness and readiness with per-dependency detail.
"""

import time

from fastapi import APIRouter, Depends

from app.container import ServiceContainer
from app.dependencies import get_container

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "family-sos-backend"}


@router.get("/readyz")
async def readyz(container: ServiceContainer = Depends(get_container)):
    """
    Readiness check with all dependencies.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await container.db.health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "pool_utilization_percent": pool_stats.get("pool_utilization_percent", 0),
                    "connection_time_ms": db_health.get("connection_time_ms", 0),
                }
            )
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Redis (realtime family channel)
    t0 = time.time()
    if container.redis is None:
        checks["redis"] = {"ok": False, "error": "Redis not configured"}
        overall_ok = False
    else:
        redis_ok = await container.redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and redis_ok

    # 3) Configuration
    settings = container.settings
    config_issues = []
    if not settings.RESEND_API_KEY:
        config_issues.append("RESEND_API_KEY not set")
    if not settings.twilio_configured():
        config_issues.append("Twilio not configured, calls are simulated")
    if not settings.redis_url():
        config_issues.append("No Redis URL configured")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    # 4) Email provider reachability
    provider = await container.email_provider.health_check()
    checks["email_provider"] = {
        "ok": provider.get("healthy", False),
        **{k: v for k, v in provider.items() if k not in ("healthy", "service")},
    }
    overall_ok = overall_ok and checks["email_provider"]["ok"]

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
