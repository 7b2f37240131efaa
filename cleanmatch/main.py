"""
FastAPI application shell: resource lifecycle, health routes, request
logging and the service error handler.
"""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cleanmatch.api import health
from cleanmatch.config import settings
from cleanmatch.db.pool import db_pool
from cleanmatch.errors import ServiceError
from cleanmatch.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from cleanmatch.services.infrastructure.redis_client import redis_cache

setup_logging(log_level="INFO")
logger = get_logger(__name__)

HTTP_STATUS_BY_CODE = {
    "unauthenticated": 401,
    "permission-denied": 403,
    "invalid-argument": 400,
    "not-found": 404,
    "already-exists": 409,
    "failed-precondition": 412,
    "deadline-exceeded": 504,
    "internal": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool and Redis on startup, close them in reverse order."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []
    try:
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        await redis_cache.initialize()
        startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)
        if "redis" in startup_tasks:
            await redis_cache.close()
        if "database_pool" in startup_tasks:
            await db_pool.close()
        raise

    yield

    logger.info("Application shutting down")
    await redis_cache.close()
    await db_pool.close()
    logger.info("All services closed")


app = FastAPI(
    title="CleanMatch Core",
    description="Lead matching, dispute lifecycle and pro health scoring",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    status_code = HTTP_STATUS_BY_CODE.get(exc.code, 500)
    if status_code >= 500:
        logger.error("Service error", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag the request with an id and log it with timing."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    bind_request_context(request_id=request_id)
    start_time = time.time()
    try:
        response = await call_next(request)
    finally:
        clear_request_context()
    response.headers["X-Request-ID"] = request_id
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        request_id=request_id,
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
