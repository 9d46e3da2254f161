"""
FastAPI application entry point.
Sets up the API with lifespan events for database initialization.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from tenantpay.config import settings
from tenantpay.database import init_db
from tenantpay.api.router import api_router
from tenantpay.auth.firebase import initialize_firebase
from tenantpay.exceptions import PaymentError
from tenantpay.middleware.metrics_middleware import MetricsMiddleware
from tenantpay.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: Initialize database and Firebase Admin SDK
    """
    configure_logging('tenantpay-api', settings.log_level)

    await init_db()

    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY is not set, stored credentials use the insecure development key",
            extra={"event": "vault_default_key"}
        )

    # Skip if Firebase config not provided (for local dev without Firebase)
    if settings.firebase_project_id:
        try:
            initialize_firebase()
        except (ValueError, OSError) as e:
            if settings.environment == "production":
                raise
            logger.warning(f"Firebase initialization failed: {e}")

    yield


app = FastAPI(
    title="Tenant Payments API",
    description="Multi-tenant Vipps and Stripe payment integration",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware (must be after CORS to track all requests)
app.add_middleware(MetricsMiddleware)

app.include_router(api_router, prefix="/api")


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    """Render payment layer faults without stack detail."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={"event": "payment_error", "error_code": exc.error_code, **exc.context}
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Tenant Payments API",
        "version": "0.1.0",
        "environment": settings.environment
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
