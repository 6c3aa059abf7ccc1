"""
Health check endpoints with database pool and configuration monitoring.
"""

import time

from fastapi import APIRouter

from crm_sync.config import settings
from crm_sync.db.pool import db_health_check
from crm_sync.services.infrastructure.encryption_service import validate_encryption_config

router = APIRouter()


@router.get("/health")
async def health():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "crm-sync"}


@router.get("/readyz")
async def readyz():
    """Readiness check covering the database pool, token encryption and CRM settings."""
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    encryption_ok = validate_encryption_config()
    checks["encryption"] = {"ok": encryption_ok}
    overall_ok = overall_ok and encryption_ok

    config_issues = []
    if not settings.DATABASE_URL:
        config_issues.append("DATABASE_URL not set")
    if not settings.jwks_url():
        config_issues.append("SUPABASE_URL not set")
    if not settings.OPENAI_API_KEY:
        config_issues.append("OPENAI_API_KEY not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
        "crm_providers": {
            "hubspot": bool(settings.HUBSPOT_CLIENT_ID and settings.HUBSPOT_CLIENT_SECRET),
            "salesforce": bool(settings.SALESFORCE_CLIENT_ID and settings.SALESFORCE_CLIENT_SECRET),
        },
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
