"""
Ticketpay API - Main Application Entry Point

Ticket bookings paid through M-Pesa STK Push:
- Oversell-proof reservations with a single conditional UPDATE
- Booking and payment lifecycle driven by provider callbacks
- Structured logging with request correlation
- Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ticketpay.core.config import get_settings
from ticketpay.core.logging import setup_logging, get_logger
from ticketpay.core.metrics import metrics_endpoint
from ticketpay.api.router import api_router
from ticketpay.api.middleware import RequestLoggingMiddleware
from ticketpay.services.mpesa_client import MpesaClient

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        mpesa_environment=settings.MPESA_ENVIRONMENT,
    )

    app.state.mpesa_client = MpesaClient(settings)
    if not settings.MPESA_CONSUMER_KEY or not settings.MPESA_CONSUMER_SECRET:
        logger.warning("mpesa_credentials_missing", message="Payment initiation will fail")

    yield

    await app.state.mpesa_client.aclose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ticket booking API with M-Pesa STK Push payments",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "mpesa_environment": settings.MPESA_ENVIRONMENT,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
