"""
Health check endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from cleanmatch.db.pool import db_health_check
from cleanmatch.infrastructure.observability.logging import log_health_check
from cleanmatch.services.infrastructure.redis_client import redis_cache

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Liveness: 200 whenever the process is serving."""
    return {"status": "ok", "service": "cleanmatch-core"}


@router.get("/health")
async def health():
    """Readiness with database pool and Redis status."""
    checks = {}

    t0 = time.time()
    try:
        redis_ok = await redis_cache.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
    log_health_check(
        "redis",
        checks["redis"]["ok"],
        checks["redis"].get("latency_ms", 0.0),
        checks["redis"].get("error"),
    )

    db_health = await db_health_check()
    checks["database"] = {"ok": bool(db_health.get("healthy"))}
    if db_health.get("healthy"):
        checks["database"].update(
            connection_time_ms=db_health.get("connection_time_ms", 0),
            pool_size=db_health.get("pool_size", 0),
            pool_available=db_health.get("pool_available", 0),
        )
    else:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    log_health_check(
        "database",
        checks["database"]["ok"],
        db_health.get("connection_time_ms", 0.0),
        checks["database"].get("error"),
    )

    overall_ok = all(check["ok"] for check in checks.values())
    return JSONResponse(
        status_code=200 if overall_ok else 503,
        content={"status": "ok" if overall_ok else "degraded", "checks": checks},
    )
