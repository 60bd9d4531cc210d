"""Background execution of action tasks on the running event loop.

Jobs are fire-and-forget for the transition runner: dispatch() returns as
soon as the job is scheduled. Job errors and timeouts are caught here and
logged with the job's label; they never reach the dispatcher's caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from flowengine.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class AsyncioBackgroundDispatcher:
    """IBackgroundDispatcher backed by asyncio tasks.

    Pending tasks are referenced until they finish so the loop cannot
    garbage-collect them mid-flight; drain() awaits whatever is left.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def dispatch(
        self, job: Callable[[], Awaitable[Any]], options: dict[str, Any]
    ) -> None:
        """Schedule job. Options: label (for logs) and timeout (seconds or None)."""
        label = str(options.get("label") or getattr(job, "__name__", "job"))
        timeout = options.get("timeout")
        task = asyncio.create_task(self._run(job, label, timeout), name=f"flow-task:{label}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.debug("Dispatched background flow task %s (timeout=%s)", label, timeout)

    async def drain(self) -> None:
        """Wait for every dispatched job to finish (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _run(
        job: Callable[[], Awaitable[Any]], label: str, timeout: float | None
    ) -> None:
        try:
            if timeout is not None:
                await asyncio.wait_for(job(), timeout=float(timeout))
            else:
                await job()
        except TimeoutError:
            logger.error("Background flow task %s timed out after %ss", label, timeout)
        except asyncio.CancelledError:
            logger.warning("Background flow task %s was cancelled", label)
            raise
        except Exception:
            logger.exception("Background flow task %s failed", label)
