"""Engine lifespan: startup and shutdown.

Single place for all startup/shutdown logic. Host applications wrap their
own lifetime in create_lifespan(); no business logic here, only wiring of
infrastructure (logging, cache, background dispatcher, telemetry, DB
engine dispose).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from flowengine.core.config import get_settings
from flowengine.infrastructure.cache.redis_cache import CacheService
from flowengine.infrastructure.persistence.database import dispose_engine, get_engine
from flowengine.infrastructure.services.background_dispatcher import (
    AsyncioBackgroundDispatcher,
)
from flowengine.shared.telemetry.logging import get_logger, setup_logging
from flowengine.shared.telemetry.telemetry import (
    TelemetryConfig,
    get_telemetry,
    set_telemetry,
)

logger = get_logger(__name__)


@dataclass
class EngineRuntime:
    """Process-wide collaborators created at startup."""

    dispatcher: AsyncioBackgroundDispatcher
    cache: CacheService | None = None
    telemetry: TelemetryConfig | None = None


@asynccontextmanager
async def create_lifespan() -> AsyncIterator[EngineRuntime]:
    """Run startup then yield the runtime; on exit run shutdown.

    Startup order: logging, Redis cache (if enabled), telemetry (if
    enabled). Shutdown order: pending background jobs, cache disconnect,
    telemetry shutdown, SQL engine dispose.
    """
    settings = get_settings()

    # ---- Startup ----
    setup_logging()
    runtime = EngineRuntime(dispatcher=AsyncioBackgroundDispatcher())

    if settings.redis_enabled:
        cache = CacheService()
        await cache.connect()
        runtime.cache = cache

    if settings.telemetry_enabled:
        telemetry = TelemetryConfig(
            service_name=settings.app_name,
            service_version=settings.app_version,
            enabled=True,
            environment=settings.telemetry_environment,
        )
        telemetry.setup_telemetry(
            exporter_type=settings.telemetry_exporter,
            otlp_endpoint=settings.telemetry_otlp_endpoint,
            sample_rate=settings.telemetry_sample_rate,
        )
        engine = get_engine()
        if engine is not None:
            telemetry.instrument_sqlalchemy(engine)
        if runtime.cache is not None:
            telemetry.instrument_redis()
        set_telemetry(telemetry)
        runtime.telemetry = telemetry
        logger.info("Telemetry initialized")

    try:
        yield runtime
    finally:
        # ---- Shutdown ----
        await runtime.dispatcher.drain()

        if runtime.cache is not None:
            await runtime.cache.disconnect()
            logger.info("Cache disconnected")

        telemetry_instance = get_telemetry()
        if telemetry_instance is not None:
            telemetry_instance.shutdown()
            set_telemetry(None)

        await dispose_engine()
        logger.info("Database engine disposed")
