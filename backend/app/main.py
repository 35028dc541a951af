"""
Ticket Reservation Core - Main Application Entry Point

- Per-category inventory ledger with conditional-update reservations
- Booking lifecycle: hold, receipt verification, confirmation or release
- Durable notification log with live WebSocket delivery and replay
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_logging, get_logger
from app.core.metrics import metrics_endpoint
from app.api.router import api_router
from app.api.middleware import RequestLoggingMiddleware
from app.db.session import SessionLocal
from app.infrastructure import get_redis, close_redis, redis_status
from app.services.channel_broker import ChannelBroker
from app.services.expiry_service import ExpirySweeper
from app.services.live_relay import RedisLiveRelay
from app.services.notification_service import NotificationDispatcher

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
    )

    broker = ChannelBroker(queue_size=settings.CHANNEL_QUEUE_SIZE)
    relay = None
    redis_client = await get_redis()
    if redis_client:
        relay = RedisLiveRelay(redis_client, broker, settings.REDIS_RELAY_CHANNEL)
        relay.start()
        logger.info("redis_ready", relay_channel=settings.REDIS_RELAY_CHANNEL)
    else:
        logger.warning("redis_unavailable", message="Live delivery limited to this process")

    dispatcher = NotificationDispatcher(
        SessionLocal,
        broker,
        relay,
        write_retries=settings.NOTIFICATION_WRITE_RETRIES,
        retry_backoff=settings.NOTIFICATION_RETRY_BACKOFF_SECONDS,
        relay_queue_size=settings.RELAY_QUEUE_SIZE,
    )
    app.state.dispatcher = dispatcher

    sweeper = None
    if settings.EXPIRY_SWEEP_ENABLED:
        sweeper = ExpirySweeper(SessionLocal, dispatcher, settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
        sweeper.start()

    yield

    # Cleanup
    if sweeper:
        await sweeper.stop()
    await dispatcher.close()
    if relay:
        await relay.stop()
    await broker.close_all()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ticket reservation and booking lifecycle API with live notifications",
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
register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    dispatcher = getattr(app.state, "dispatcher", None)
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await redis_status(),
        "live_channels": dispatcher.broker.connection_count() if dispatcher else 0,
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
