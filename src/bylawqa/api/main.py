"""bylawqa API — FastAPI application for bylaw search and citation.

Run:
    uvicorn bylawqa.api.main:app --reload
    # or
    bylawqa-api
"""

import logging
import uuid
from contextlib import asynccontextmanager

import mlflow
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from bylawqa.api.ratelimit import RateLimiter
from bylawqa.api.routes import router
from bylawqa.config import settings
from bylawqa.observability.logging import correlation_id, setup_logging
from bylawqa.pipeline.service import BylawSearchService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build and open the search service on startup, close it on shutdown."""
    setup_logging(json_format=settings.log_json, level=settings.log_level)
    mlflow.set_tracking_uri(settings.mlflow_tracking_uri)
    mlflow.set_experiment(settings.mlflow_experiment_name)

    service = BylawSearchService(settings)
    await service.open()
    app.state.service = service
    app.state.search_limiter = RateLimiter(settings.search_rate_limit_per_minute)
    logger.info("bylawqa API ready")
    try:
        yield
    finally:
        logger.info("Shutting down")
        await service.aclose()


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Set correlation ID from X-Request-ID header or generate a new one."""

    async def dispatch(self, request: Request, call_next):
        cid = request.headers.get("x-request-id", str(uuid.uuid4()))
        token = correlation_id.set(cid)
        try:
            response = await call_next(request)
            response.headers["x-request-id"] = cid
            return response
        finally:
            correlation_id.reset(token)


app = FastAPI(
    title="bylawqa",
    description="Hybrid search and citation verification over municipal bylaws.",
    version="0.3.0",
    lifespan=lifespan,
)

app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health")
async def health(request: Request):
    """Health check — verifies DB connectivity and verification store contents."""
    checks = {}
    service: BylawSearchService | None = getattr(request.app.state, "service", None)

    if service is None or service.database is None:
        checks["database"] = "not configured"
    else:
        try:
            await service.database.ping()
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"

    if checks["database"] == "ok":
        try:
            checks["verified_bylaws"] = await service.verification_store.count_bylaws()
        except Exception as e:
            checks["verified_bylaws"] = f"error: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, "checks": checks}


def run():
    """Entry point for bylawqa-api console script."""
    uvicorn.run("bylawqa.api.main:app", host="0.0.0.0", port=8000, reload=True)
