"""
Seat Booking Engine - Main Application Entry Point

A seat reservation and booking-commit service demonstrating:
- Exclusive, expiring seat holds on a shared Redis ledger
- Per-seat optimistic compare-and-swap in PostgreSQL
- Payment outside any transaction, with compensation on failure
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from seatbook.api.middleware import RequestLoggingMiddleware
from seatbook.api.router import api_router
from seatbook.core.config import get_settings
from seatbook.core.exceptions import BookingEngineError
from seatbook.core.logging import get_logger, setup_logging
from seatbook.core.metrics import metrics_endpoint
from seatbook.db.session import dispose_engine
from seatbook.infrastructure.redis_client import close_redis, ping_redis
from seatbook.services.expiry_worker import ExpiryWorker
from seatbook.services.strategy_factory import get_services, set_services

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_gateway=settings.PAYMENT_GATEWAY,
    )

    services = await get_services()
    ledger = await ping_redis()
    if ledger["status"] == "connected":
        logger.info("ledger_ready")
    else:
        # Holds fail closed with 503 until Redis is reachable
        logger.warning("ledger_unavailable", error=ledger.get("error"))

    worker = None
    if settings.EXPIRY_SWEEP_ENABLED:
        worker = ExpiryWorker(services.coordinator, settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
        await worker.start()

    yield

    # Cleanup
    if worker:
        await worker.stop()
    await services.orchestrator.drain()
    await services.payments.gateway.close()
    set_services(None)
    await close_redis()
    await dispose_engine()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Seat holds and booking commits with wallet and card payments",
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

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.exception_handler(BookingEngineError)
async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
    logger.info("request_rejected", error=exc.code, status_code=exc.status_code, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    ledger = await ping_redis()
    return {
        "status": "healthy" if ledger["status"] == "connected" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "ledger": ledger,
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
