import asyncio
from typing import Awaitable, Optional

from pagebot.logging_config import get_logger

logger = get_logger("background")


class BackgroundTaskSpawner:
    """Runs coroutines after the webhook response has been returned.

    Tasks are tracked until they settle so shutdown can wait for them; each one is
    wrapped so its failure is logged and never reaches sibling tasks.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(_run_safely(coro, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for tracked tasks, including ones spawned while draining."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

        if self._tasks:
            logger.warning(
                "Background tasks still running at shutdown",
                extra={"context": {"pending": len(self._tasks)}},
            )


async def _run_safely(coro: Awaitable, name: Optional[str]) -> None:
    try:
        await coro
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Background task failed", extra={"context": {"task": name}})
