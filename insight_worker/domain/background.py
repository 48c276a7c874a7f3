import asyncio
from typing import Awaitable, Optional, Set
import structlog

logger = structlog.get_logger(__name__)


class BackgroundTaskSet:
    """Detached tasks kept referenced until done; unhandled failures are logged, never lost"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            logger.warning("background_task_cancelled", task=task.get_name())
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(error),
                exc_info=error
            )

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def drain(self, timeout: Optional[float] = 10.0) -> None:
        """Wait for pending tasks; whatever outlives the timeout is cancelled"""

        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return

        logger.info("draining_background_tasks", count=len(pending))
        done, still_pending = await asyncio.wait(pending, timeout=timeout)

        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            logger.warning("background_tasks_cancelled", count=len(still_pending))
