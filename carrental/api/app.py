"""
FastAPI application entry point with health check and metrics routes.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from carrental.api.routes import admin, agencies, bookings
from carrental.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    workflow_error_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from carrental.domain.errors import WorkflowError
from carrental.lib.logging import get_logger, set_actor, set_correlation_id
from carrental.lib.metrics import get_metrics_collector
from carrental.lib.settings import settings
from carrental.services.notification_service import get_notification_dispatcher

logger = get_logger(__name__)


# Correlation ID middleware
class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation_id to all requests for distributed tracing.
    Accepts X-Correlation-ID from incoming requests or generates a new one.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        # Request state for handlers, context var for log records
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)
        set_actor(None)

        logger.info(
            "Incoming request",
            extra={"extra_fields": {
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            }},
        )

        response = await call_next(request)

        response.headers["X-Correlation-ID"] = correlation_id

        logger.info(
            "Response sent",
            extra={"extra_fields": {"status_code": response.status_code}},
        )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup/shutdown events.
    """
    logger.info(f"{settings.app_name} starting up...")
    yield
    # Let queued notifications finish
    get_notification_dispatcher().shutdown(wait=True)
    logger.info(f"{settings.app_name} shutting down...")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Booking lifecycle and agency approval workflow for the car rental marketplace",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.app_base_url,
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(CorrelationIdMiddleware)


# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(WorkflowError, workflow_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


# Include routers
app.include_router(bookings.router)
app.include_router(agencies.router)
app.include_router(admin.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
    """
    Prometheus-compatible metrics endpoint.

    Metrics exposed:
    - bookings_created_total
    - status_transitions_total
    - transition_conflicts_total
    - notifications_total
    """
    return PlainTextResponse(
        content=get_metrics_collector().export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
