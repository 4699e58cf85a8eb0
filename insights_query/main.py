"""
insights-query API — HTTP surface over the query executor.

Endpoints:
  GET  /health          — liveness + config discovery summary
  POST /query           — run KQL for a profile (errors come back as 200 + error body)
  GET  /auth/status     — silent auth probe
  POST /auth/test       — acquire a token
  GET  /profiles        — selectable profiles
  GET  /saved           — saved .kql queries (also /saved/search, POST /saved)
  GET  /cache/stats     — cache stats (also POST /cache/clear, /cache/cleanup)

Configuration comes from the discovered .insights-config.json (or the
INSIGHTS_* environment variables when there is none).

Run locally:
  uv run uvicorn insights_query.main:app --reload --port 52345
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from insights_query import __version__
from insights_query.backends import close_all_backends
from insights_query.errors import AuthError, ConfigError, ProfileNotFoundError
from insights_query.executor import QueryExecutor, get_executor
from insights_query.profile_store import ProfileStore
from insights_query.routers import auth, cache, profiles, query, saved

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("insights-query")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Report the config source at startup; close backends on shutdown."""
    executor = get_executor()
    if isinstance(executor.source, ProfileStore):
        logger.info("Using config file: %s", executor.source.path)
    else:
        logger.warning("No config file found — using INSIGHTS_* environment variables")
    if not executor.is_configured():
        logger.warning("Default profile is not fully configured; queries will return config errors")
    yield
    await close_all_backends()


app = FastAPI(
    title="insights-query API",
    version=__version__,
    description="Profile-aware KQL queries against Application Insights and Kusto.",
    lifespan=_lifespan,
)

# CORS origins from CORS_ORIGINS (comma-separated)
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every incoming request with timing."""
    logger.info("▶ %s %s", request.method, request.url.path)
    t0 = time.time()
    response = await call_next(request)
    elapsed_ms = (time.time() - t0) * 1000
    if response.status_code >= 400:
        logger.warning(
            "◀ %s %s → %d  (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed_ms,
        )
    else:
        logger.info(
            "◀ %s %s → %d  (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed_ms,
        )
    return response


# ---------------------------------------------------------------------------
# Error mapping (outside /query, which always answers 200)
# ---------------------------------------------------------------------------


@app.exception_handler(ConfigError)
async def _config_error(request: Request, exc: ConfigError):
    status = 404 if isinstance(exc, ProfileNotFoundError) else 400
    return JSONResponse(status_code=status, content={"detail": str(exc), "category": exc.category})


@app.exception_handler(AuthError)
async def _auth_error(request: Request, exc: AuthError):
    return JSONResponse(status_code=401, content={"detail": str(exc), "category": exc.category})


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(query.router)
app.include_router(auth.router)
app.include_router(profiles.router)
app.include_router(saved.router)
app.include_router(cache.router)


@app.get("/health", summary="Health check")
async def health(executor: QueryExecutor = Depends(get_executor)):
    source = str(executor.source.path) if isinstance(executor.source, ProfileStore) else "environment"
    return {
        "status": "ok",
        "service": "insights-query",
        "version": __version__,
        "config_source": source,
        "configured": executor.is_configured(),
    }
