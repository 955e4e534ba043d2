# main.py — Department Kanban Board API
# Features:
# - Request IDs, timing log and security headers on every response
# - Validation errors reported as 400 with field paths
# - Health check with DB verification
# - All routers registered

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from database import init_db, close_db, get_db_context
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("kanban-board")

VERSION = "1.0.0"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def _check_startup_config() -> bool:
    """Log what is missing from the environment; never blocks startup"""
    problems = []
    if len(os.getenv("JWT_SECRET_KEY", "")) < 32:
        problems.append("JWT_SECRET_KEY is not set or shorter than 32 characters; tokens will not survive a restart")
    if os.getenv("VAPID_PUBLIC_KEY") and os.getenv("VAPID_PRIVATE_KEY"):
        logger.info("Web push notifications enabled")
    else:
        problems.append("VAPID keys not configured; push notifications are disabled")

    for problem in problems:
        logger.warning(problem)
    return not problems


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Kanban Board API v{VERSION}")
    await init_db()
    _check_startup_config()
    setup_telemetry(app)
    yield
    logger.info("Shutting down Kanban Board API")
    await close_db()


app = FastAPI(
    title="Kanban Board",
    description="Department task boards with recurring tasks, Sunday schedule and push notifications",
    version=VERSION,
    lifespan=lifespan,
)

ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


# ============================================================
# MIDDLEWARE
# ============================================================

@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{elapsed:.4f}s"
    response.headers.update(SECURITY_HEADERS)

    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.3f}s) [rid={request_id[:8]}]")
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Only plain strings go back to the client
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "type": str(err.get("type", "unknown")),
            "msg": str(err.get("msg", "")),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": errors, "request_id": getattr(request.state, "request_id", None)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "request_id": getattr(request.state, "request_id", None)},
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, invites, users, departments, tasks,
    notifications, schedules, templates,
)

for module in (auth, invites, users, departments, tasks, notifications, schedules, templates):
    app.include_router(module.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Liveness plus a round trip to the database"""
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        database = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": database,
    }


@app.get("/")
async def root():
    return {"name": "Kanban Board", "version": VERSION, "docs": "/docs", "health": "/health"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
