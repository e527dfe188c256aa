"""FastAPI application entry point for Trustgate."""

import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import (
    global_exception_handler,
    trust_engine_exception_handler,
)
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes import fraud as fraud_routes
from src.api.routes.health import router as health_router
from src.config import settings
from src.domains.fraud.exceptions import TrustEngineError
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


async def sweep_expired_sessions(interval_seconds: float) -> None:
    """Close checkout sessions that outlived their TTL, forever."""
    from src.db.database import async_session_factory

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with async_session_factory() as session:
                await fraud_routes.collector.expire_stale_sessions(session)
        except Exception:
            logger.exception("session_sweep_failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "trustgate_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
    )

    # Initialize database tables and default detection rules
    from src.db.database import async_session_factory, init_db

    await init_db()
    async with async_session_factory() as session:
        await fraud_routes.rule_store.seed_defaults(session)

    background_tasks = [
        asyncio.create_task(sweep_expired_sessions(settings.session_sweep_interval_seconds))
    ]

    producer = None
    consumers = []
    if settings.kafka_enabled:
        try:
            from src.consumers.order_consumer import OrderOutcomeConsumer
            from src.shared.kafka_utils import create_producer

            producer = await create_producer(
                settings.kafka_bootstrap_servers, client_id=settings.app_name
            )
            fraud_routes.gate.producer = producer

            consumers = [
                OrderOutcomeConsumer(
                    bootstrap_servers=settings.kafka_bootstrap_servers,
                    topic=settings.order_events_topic,
                    group_id=settings.kafka_consumer_group,
                ),
            ]
            for consumer in consumers:
                background_tasks.append(asyncio.create_task(consumer.start()))

            logger.info("kafka_consumers_started", count=len(consumers))
        except Exception:
            logger.warning("kafka_failed_to_start", exc_info=True)

    yield

    # Shutdown consumers
    for consumer in consumers:
        with contextlib.suppress(Exception):
            await consumer.stop()
    if producer is not None:
        fraud_routes.gate.producer = None
        with contextlib.suppress(Exception):
            await producer.stop()
    for task in background_tasks:
        task.cancel()
    logger.info("trustgate_shutting_down")


app = FastAPI(
    title="Trustgate",
    description="Real-time checkout fraud detection and customer trust scoring",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS: explicit origins, or any origin in debug
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Domain errors carry their own status; everything else is a 500
app.add_exception_handler(TrustEngineError, trust_engine_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(fraud_routes.router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
