"""Engine lifespan wiring."""

import asyncio

from flowengine.core.lifespan import EngineRuntime, create_lifespan
from flowengine.infrastructure.services import AsyncioBackgroundDispatcher
from flowengine.shared.telemetry.telemetry import get_telemetry


async def test_lifespan_yields_runtime_without_optional_services():
    async with create_lifespan() as runtime:
        assert isinstance(runtime, EngineRuntime)
        assert isinstance(runtime.dispatcher, AsyncioBackgroundDispatcher)
        assert runtime.cache is None
        assert runtime.telemetry is None
    assert get_telemetry() is None


async def test_shutdown_drains_background_jobs():
    done: list[str] = []

    async def job() -> None:
        await asyncio.sleep(0.01)
        done.append("sent")

    async with create_lifespan() as runtime:
        await runtime.dispatcher.dispatch(job, {"label": "notify"})
        assert done == []
    assert done == ["sent"]
