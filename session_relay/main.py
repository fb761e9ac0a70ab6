"""FastAPI application entry point."""

import os
import signal
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from session_relay.api.routes import health, ws
from session_relay.api.ws.broker import Broker, RedisBroker
from session_relay.api.ws.message_router import MessageRouter
from session_relay.api.ws.registry import SessionRegistry
from session_relay.core.config import Settings, get_settings
from session_relay.core.logging import configure_logging

logger = structlog.get_logger(__name__)


def stop_process(error: BaseException) -> None:
    """Ask the server to shut down after the router failed for good.

    Sends SIGTERM to this process, which uvicorn handles as a graceful
    shutdown.
    """
    logger.critical("stopping_process", error=str(error))
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(
    settings: Settings | None = None,
    broker: Broker | None = None,
    on_fatal: Callable[[BaseException], None] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use. Uses the cached settings if not provided.
        broker: Pub/sub backend. A RedisBroker for ``settings.redis_url``
            is created if not provided.
        on_fatal: Called if the message router stops for good after
            startup. Defaults to stop_process.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()
    on_fatal = on_fatal or stop_process

    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Connect to the backend and run the router for the app's lifetime.

        Any startup failure propagates so the server exits instead of
        running without a subscription.
        """
        logger.info(
            "application_starting",
            app_name=app.title,
            listen_addr=settings.listen_addr,
            redis_addr=settings.redis_addr,
        )

        app_broker = broker or RedisBroker(
            settings.redis_url,
            subscribe_timeout=settings.subscribe_timeout,
        )
        registry = SessionRegistry()
        message_router = MessageRouter(
            registry,
            app_broker,
            topic_prefix=settings.topic_prefix,
            delivery_timeout=settings.delivery_timeout,
            resubscribe_max_attempts=settings.resubscribe_max_attempts,
            resubscribe_initial_delay=settings.resubscribe_initial_delay,
            resubscribe_max_delay=settings.resubscribe_max_delay,
            on_fatal=on_fatal,
        )

        try:
            await app_broker.ping()
            logger.info("connected_to_redis", redis_addr=settings.redis_addr)
            await message_router.start()
        except Exception as e:
            logger.critical("application_start_failed", error=str(e), error_type=type(e).__name__)
            await app_broker.close()
            raise

        app.state.settings = settings
        app.state.broker = app_broker
        app.state.registry = registry
        app.state.message_router = message_router

        yield

        logger.info("application_shutting_down")
        await message_router.stop()
        await app_broker.close()

    app = FastAPI(
        title=settings.app_name,
        description="Relays Redis session topics to WebSocket clients",
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(ws.router)

    return app
