"""
Main FastAPI application entry point.

Responsibilities:
- Initialize FastAPI app
- Configure CORS
- Include routers
- Setup startup/shutdown events
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import data, github
from config import log_missing_env_vars, settings, to_iso8601
from models.database import close_db, get_pool_status, init_db
from services.sync_runner import sync_task_manager

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
)
# httpx logs every request at INFO; pagination makes that very noisy
logging.getLogger("httpx").setLevel(logging.WARNING)

app = FastAPI(title="GitHub Mirror API", version="1.0.0")


def _normalize_origin(origin: str) -> str:
    """Normalize origin values for CORS checks."""
    return origin.strip().rstrip("/")


allowed_origins: set[str] = {
    _normalize_origin(origin)
    for origin in [*settings.cors_origins, settings.FRONTEND_URL]
    if origin
}


def get_cors_headers(origin: str | None) -> dict[str, str]:
    """Return CORS headers if origin is allowed."""
    normalized_origin = _normalize_origin(origin) if origin else None
    if normalized_origin and normalized_origin in allowed_origins:
        return {
            "Access-Control-Allow-Origin": normalized_origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
            "Access-Control-Allow-Headers": "*",
        }
    return {}


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler to ensure CORS headers on all errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all uncaught exceptions with CORS headers."""
    origin = request.headers.get("origin")
    cors_headers = get_cors_headers(origin)
    logging.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers=cors_headers,
    )


# Routes
app.include_router(github.router, prefix="/api/github", tags=["github"])
app.include_router(data.router, prefix="/api/data", tags=["data"])


@app.on_event("startup")
async def startup() -> None:
    """Initialize database on startup."""
    log_missing_env_vars(logging.getLogger("config"))
    if settings.AUTO_CREATE_TABLES:
        # Alembic handles migrations everywhere else
        await init_db()
        logging.info("Database tables created")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Stop in-flight syncs and clean up database connections on shutdown."""
    logging.info("Shutting down, cancelling running syncs...")
    await sync_task_manager.shutdown()
    await close_db()
    logging.info("Database connections closed")


@app.get("/")
async def root_health_check() -> dict[str, str]:
    """Root endpoint exposing the health check payload."""
    return await health_check()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/health")
async def api_health_check() -> dict[str, str | None]:
    """Health check under the API prefix, with server time."""
    return {"status": "ok", "timestamp": to_iso8601(datetime.utcnow())}


@app.get("/health/db")
async def db_health_check() -> dict[str, object]:
    """Database health check with pool status."""
    return {
        "status": "ok",
        "pool": get_pool_status(),
    }
