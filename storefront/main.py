"""
Storefront Orders & Subscriptions Service
Order lifecycle, inventory reconciliation and subscription scheduling
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import subprocess
import os

from shared.core import ServiceHealth, HealthStatus, setup_logging, RequestLoggingMiddleware, get_logger
from storefront.core_settings import get_settings
from storefront.application.errors import StorefrontError
from storefront.application.sweeper import ExpirySweepRunner
from storefront.api.order_routes import router as order_router
from storefront.api.subscription_routes import router as subscription_router
from storefront.api.store_routes import router as store_router
from storefront.infrastructure.db import engine, SessionLocal, init_models

settings = get_settings()

# Service configuration
SERVICE_NAME = "storefront-service"
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Orders, inventory and subscription scheduling for the FruitBowl storefront"

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL,
    version=SERVICE_VERSION,
    environment=os.getenv("ENVIRONMENT", "development")
)

logger = get_logger(__name__)

sweep_runner = ExpirySweepRunner(SessionLocal, settings.SUBSCRIPTION_SWEEP_INTERVAL_SECONDS)

def run_migrations() -> None:
    logger.info("Running database migrations")
    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=os.path.join(os.path.dirname(__file__), ".."),
            capture_output=True,
            text=True,
            check=False
        )
    except OSError as e:
        logger.error(f"Migration error: {e}")
        return
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS:
        run_migrations()

    try:
        init_models()
        logger.info("Database models initialized")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    sweep_runner.start()
    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")
    await sweep_runner.stop()

app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    logger.info(
        f"Request rejected: {exc.message}",
        extra={'extra_fields': {'error': type(exc).__name__, 'path': request.url.path}}
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        f"Database error on {request.method} {request.url.path}",
        exc_info=exc,
        extra={'extra_fields': {'path': request.url.path}}
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

def _sweep_check() -> dict:
    state = sweep_runner.health()
    status_val = HealthStatus.WARN if state["last_error"] else HealthStatus.PASS
    return {"status": status_val.value, "componentType": "scheduler", **state}

health_service = ServiceHealth(SERVICE_NAME, SERVICE_VERSION, engine=engine)
health_service.register_check("scheduler:expiry_sweep", _sweep_check)
app.include_router(health_service.create_health_router())

app.include_router(order_router)
app.include_router(subscription_router)
app.include_router(store_router)

@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "orders": "/orders",
            "subscriptions": "/subscriptions",
            "store": "/store/active"
        }
    }
