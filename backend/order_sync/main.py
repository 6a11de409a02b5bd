"""FastAPI application entry point for the order sync engine."""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from order_sync import __version__
from order_sync.api.routes import api_router
from order_sync.core.config import settings
from order_sync.core.logging_config import configure_logging
from order_sync.services.orchestrator import build_orchestrator

configure_logging(settings)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its duration and a request id."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000
        request_logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({duration_ms:.1f}ms) [{request_id}]"
        )
        response.headers["X-Request-ID"] = request_id
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting order sync engine")

    # Tests install their own orchestrator before startup
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator(settings)

    orchestrator = app.state.orchestrator
    await orchestrator.start()
    logger.info(f"Connectivity monitor running, {orchestrator.network_status().unsynced_count} changes pending sync")

    yield

    await orchestrator.stop()
    logger.info("Shutting down order sync engine")


app = FastAPI(
    title="Order Sync Engine",
    description="Offline-first order modification and synchronization",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": __version__}
