"""Tests for AsyncioBackgroundDispatcher."""

import asyncio
import logging

from flowengine.infrastructure.services.background_dispatcher import (
    AsyncioBackgroundDispatcher,
)


async def test_dispatch_returns_before_job_runs() -> None:
    dispatcher = AsyncioBackgroundDispatcher()
    started = asyncio.Event()
    release = asyncio.Event()
    done: list[str] = []

    async def job() -> None:
        started.set()
        await release.wait()
        done.append("job")

    await dispatcher.dispatch(job, {"label": "notify", "timeout": None})
    assert done == []
    assert dispatcher.pending == 1

    await started.wait()
    release.set()
    await dispatcher.drain()
    assert done == ["job"]
    assert dispatcher.pending == 0


async def test_job_errors_are_logged_not_raised(caplog) -> None:
    dispatcher = AsyncioBackgroundDispatcher()

    async def job() -> None:
        raise RuntimeError("smtp down")

    with caplog.at_level(logging.ERROR):
        await dispatcher.dispatch(job, {"label": "order.notify"})
        await dispatcher.drain()
    assert "order.notify failed" in caplog.text


async def test_timeout_cancels_job(caplog) -> None:
    dispatcher = AsyncioBackgroundDispatcher()
    finished: list[bool] = []

    async def slow() -> None:
        await asyncio.sleep(5)
        finished.append(True)

    with caplog.at_level(logging.ERROR):
        await dispatcher.dispatch(slow, {"label": "slow", "timeout": 0.01})
        await dispatcher.drain()
    assert finished == []
    assert "slow timed out" in caplog.text
