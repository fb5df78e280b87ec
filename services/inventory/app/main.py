"""
Inventory Microservice
Stock ledger with direct adjustments over HTTP and order-driven deductions
from the order event stream.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from functools import partial
import subprocess
import os

from shared.core import (
    ServiceHealth,
    setup_logging,
    RequestLoggingMiddleware,
    get_logger,
    database_check,
    redis_check,
    worker_check,
)
from app.api.routes import router as inventory_router
from app.application.service import service_scope
from app.core_settings import get_settings
from app.infrastructure.db import SessionLocal, engine, init_models
from app.infrastructure.listener import OrderEventListener
from app.infrastructure.locks import get_lock_coordinator
from app.infrastructure.publisher import get_publisher
from app.infrastructure.redis_client import get_redis

SERVICE_NAME = "inventory-service"
SERVICE_DESCRIPTION = "Inventory ledger microservice"

settings = get_settings()
SERVICE_VERSION = settings.SERVICE_VERSION

setup_logging(service_name=SERVICE_NAME, level=settings.LOG_LEVEL)

logger = get_logger(__name__)

def build_listener() -> OrderEventListener:
    factory = partial(
        service_scope,
        SessionLocal,
        get_lock_coordinator(),
        get_publisher(),
        settings.LOCK_PREFIX,
    )
    return OrderEventListener(
        get_redis(),
        factory,
        stream=settings.ORDER_EVENTS_STREAM,
        group=settings.INGESTER_GROUP,
        consumer=settings.INGESTER_CONSUMER,
        block_ms=settings.INGESTER_BLOCK_MS,
        batch_size=settings.INGESTER_BATCH_SIZE,
        retry_delay=settings.INGESTER_RETRY_DELAY_SECONDS,
        item_attempts=settings.INGESTER_ITEM_ATTEMPTS,
    )

def run_migrations() -> None:
    logger.info("Running database migrations")
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=os.path.join(os.path.dirname(__file__), ".."),
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS:
        try:
            run_migrations()
        except OSError as e:
            logger.error(f"Migration error: {e}")

    init_models()
    logger.info("Database models initialized")

    listener = None
    if settings.INGESTER_ENABLED:
        listener = build_listener()
        listener.start()
        health_service.register_check("worker:order-listener", worker_check(listener.is_alive))
        health_service.register_metrics("order_listener", lambda: dict(listener.stats))

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")
    if listener is not None:
        # lets the in-flight message finish
        listener.stop(timeout=settings.LOCK_LEASE_SECONDS + settings.INGESTER_RETRY_DELAY_SECONDS)
    get_publisher().close()

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

health_service = ServiceHealth(SERVICE_NAME, SERVICE_VERSION)
health_service.register_check("database:connectivity", database_check(engine))
health_service.register_check("coordination:connectivity", redis_check(get_redis()))
health_service.register_metrics("stock_events", lambda: get_publisher().stats())
app.include_router(health_service.create_health_router())

app.include_router(inventory_router)

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
            "adjust": "/inventory/adjustments",
            "balance": "/inventory/balance",
            "low_stock": "/inventory/low-stock",
            "movements": "/inventory/movements",
            "docs": "/api/docs"
        }
    }
