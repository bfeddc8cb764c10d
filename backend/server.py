from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import time
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

# Import configuration
from config import get_settings, get_cors_config, validate_environment

# Import logging and error tracking
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception

# Import database, engine errors and routers
from database import init_db, get_engine
from ingestion.errors import (
    OrderEngineError,
    RateUnavailable,
    SourceUnreachable,
    SequencerContention,
    StagedRecordNotFound,
    StoreAlreadyRegistered,
    StoreNotFound,
    UnmatchedProducts,
    VenueNotFound,
)
from services.exchange_rate import build_rate_provider
from utils.encryption import EncryptionError, KeyNotConfiguredError
from routers import (
    orders_router, pending_orders_router, shopify_router, shopify_stores_router,
    webhooks_router, mercury_router, payouts_router, exchange_rate_router,
)

# Get settings
settings = get_settings()

# Configure structured logging
# Use JSON format in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="orderdesk-core"
)
logger = get_logger(__name__)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("=" * 60)
    logger.info("Starting Orderdesk Back Office API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug Mode: {settings.debug_enabled}")
    logger.info("=" * 60)

    # Validate environment
    env_status = validate_environment()
    if not env_status["valid"]:
        for error in env_status["errors"]:
            logger.error(f"Configuration Error: {error}")
        if settings.is_production:
            raise RuntimeError("Cannot start in production with invalid configuration")

    for warning in env_status.get("warnings", []):
        logger.warning(f"Configuration Warning: {warning}")

    # Initialize database
    try:
        await init_db()
        logger.info("PostgreSQL connection established")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    # One rate cache per running application
    app.state.rate_provider = build_rate_provider(settings)

    logger.info("Orderdesk Back Office API started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Orderdesk Back Office API...")
    await get_engine().dispose()


# Create the main app
app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Back office API for the order ledger.

    ## Features

    ### Orders (/api/orders)
    - Monthly order listing with revenue and payout metrics
    - Manual order entry
    - Batch import of raw storefront/bank payloads

    ### Pending Orders (/api/pending-orders)
    - Staging queue for fetched storefront orders
    - Bulk approve into a venue, bulk discard

    ### Shopify (/api/shopify, /api/shopify-stores, /api/webhooks)
    - Connect stores (access tokens encrypted at rest)
    - Store sync (create or replace by external id)
    - Fetch a date range into the staging queue
    - Order webhooks into the staging queue
    - Product catalog import

    ### Mercury (/api/mercury, /api/payouts)
    - Import bank credits as orders and debits as payouts
    - Submit unsynced payouts to the bank

    ### Exchange Rate (/api/exchange-rate)
    - Current primary -> secondary rate with caching
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/", tags=["Health"])
async def root():
    """Basic health check - returns 200 if service is running"""
    return {
        "message": "Orderdesk Back Office API",
        "status": "healthy",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@api_router.get("/health", tags=["Health"])
async def health_check():
    """
    Detailed health check for load balancers and uptime monitors.

    Returns:
    - 200: All systems operational
    - 503: Database unavailable
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    # Check PostgreSQL connection
    try:
        async with get_engine().begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

        health_status["checks"]["database"] = {
            "status": "connected",
            "type": "postgresql"
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "disconnected",
            "error": str(e)
        }

    # Check configuration
    env_status = validate_environment()
    health_status["checks"]["configuration"] = {
        "status": "valid" if env_status["valid"] else "invalid",
        "warnings": len(env_status.get("warnings", [])),
        "errors": len(env_status.get("errors", []))
    }

    # Return appropriate status code
    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """
    Liveness check.
    Returns 200 if the process is running (doesn't check dependencies).
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


# Include all routers
api_router.include_router(orders_router)
api_router.include_router(pending_orders_router)  # Staging queue
api_router.include_router(shopify_router)
api_router.include_router(shopify_stores_router)
api_router.include_router(webhooks_router)
api_router.include_router(mercury_router)
api_router.include_router(payouts_router)
api_router.include_router(exchange_rate_router)

# Include the main router in the app
app.include_router(api_router)

# ==================== MIDDLEWARE ====================

# CORS middleware with production-safe configuration
cors_config = get_cors_config()
app.add_middleware(
    CORSMiddleware,
    **cors_config
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information"""
    start_time = time.time()

    # Generate request ID
    request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")
    set_request_context(request_id, request.headers.get("X-User-Id"))

    if settings.debug_enabled:
        logger.debug(f"[{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

        return response
    except Exception as e:
        logger.error(f"[{request_id}] Request failed: {str(e)}")
        raise
    finally:
        clear_request_context()


# ==================== EXCEPTION HANDLERS ====================

ENGINE_ERROR_STATUS = (
    (RateUnavailable, 502),
    (SourceUnreachable, 502),
    (SequencerContention, 503),
    (StagedRecordNotFound, 404),
    (StoreNotFound, 404),
    (VenueNotFound, 404),
    (StoreAlreadyRegistered, 409),
    (UnmatchedProducts, 422),
)


@app.exception_handler(OrderEngineError)
async def order_engine_exception_handler(request: Request, exc: OrderEngineError):
    """Map engine errors raised by single-record operations to HTTP statuses"""
    status_code = 500
    for error_type, code in ENGINE_ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    if status_code == 500:
        capture_exception(exc, tags={"engine_error": type(exc).__name__}, path=request.url.path)

    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "type": type(exc).__name__}
    )


@app.exception_handler(EncryptionError)
async def encryption_exception_handler(request: Request, exc: EncryptionError):
    """Stored storefront tokens cannot be written or read with the configured key"""
    logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    status_code = 503 if isinstance(exc, KeyNotConfiguredError) else 500
    if status_code == 500:
        capture_exception(exc, tags={"engine_error": type(exc).__name__}, path=request.url.path)

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__}
    )


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    """Unique/foreign key violations (e.g. a reused order number)"""
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=409,
        content={"detail": "Conflicts with an existing record"}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}")
    if settings.debug_enabled:
        logger.error(traceback.format_exc())
    capture_exception(exc)

    # Don't expose internal errors in production
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )
    else:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "traceback": traceback.format_exc() if settings.debug_enabled else None
            }
        )
