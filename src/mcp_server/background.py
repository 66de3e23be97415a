"""Background work queue for MCP Server.

Handlers enqueue work that runs after their request has returned. A
single worker drains the queue in FIFO order for the lifetime of the
process. Work still queued at shutdown is dropped.
"""

import asyncio
from typing import Optional

from shared.logging import get_logger
from mcp_server.context import BackgroundWork, CancellationToken

logger = get_logger(__name__)


class BackgroundTaskQueue:
    """Unbounded FIFO channel with many producers and one consumer."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[BackgroundWork] = asyncio.Queue()

    def enqueue(self, work: BackgroundWork) -> None:
        """
        Queue a work item.

        Args:
            work: Async callable receiving the worker's cancellation token
        """
        if work is None:
            raise ValueError("Background work item cannot be None")
        self._queue.put_nowait(work)
        logger.debug("Background work queued", pending=self._queue.qsize())

    async def dequeue(self) -> BackgroundWork:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    def drain(self) -> int:
        """Drop every pending item and return how many were dropped."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self._queue.task_done()
            dropped += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class BackgroundWorker:
    """
    Single consumer for a ``BackgroundTaskQueue``.

    The worker's cancellation token is tied to the process lifetime and
    is what every work item receives.
    """

    def __init__(self, queue: BackgroundTaskQueue) -> None:
        self.queue = queue
        self.cancellation = CancellationToken()
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the consumer task on the running loop."""
        if self.running:
            return
        self.cancellation = CancellationToken()
        self._task = asyncio.create_task(self._run(), name="mcp-background-worker")
        logger.info("Background worker started")

    async def _run(self) -> None:
        while not self.cancellation.is_cancelled:
            work = await self.queue.dequeue()
            try:
                self._current = asyncio.create_task(work(self.cancellation))
                await self._current
            except asyncio.CancelledError:
                if self._current is None or not self._current.cancelled():
                    # The worker itself was cancelled
                    if self._current is not None:
                        self._current.cancel()
                    raise
                logger.warning("Background work cancelled")
            except Exception as e:
                logger.error(
                    "Background work failed",
                    error=str(e),
                    exc_info=True
                )
            finally:
                self._current = None
                self.queue.task_done()

    async def stop(self, grace_seconds: float = 5.0) -> None:
        """
        Stop the worker.

        The item currently executing gets ``grace_seconds`` to observe the
        cancellation token before it is cancelled outright. Items still
        waiting in the queue are dropped.
        """
        if self._task is None:
            return

        self.cancellation.cancel()
        current = self._current

        if current is not None and not current.done():
            done, _ = await asyncio.wait({current}, timeout=grace_seconds)
            if not done:
                current.cancel()
                await asyncio.gather(current, return_exceptions=True)

        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

        dropped = self.queue.drain()
        logger.info("Background worker stopped", dropped=dropped)
