import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Any]


class EventDispatcher:
    """
    Single-writer job queue.

    Every change to reward and redemption state runs as a job on this queue,
    one at a time and in submission order. Remote calls run as their own tasks
    and hand their result back to the queue, so completions never race with
    notification handling.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[Any]] = set()
        self._pending: int = 0

    def start(self) -> None:
        """Start the worker task if it is not running yet."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="rewardsync-dispatcher")
            logger.debug("Dispatcher started")

    def enqueue(self, job: Job) -> None:
        """
        Queue a job for the worker.

        Args:
            job: Callable taking no arguments. May return an awaitable, which is awaited
                before the next job starts.
        """
        self._pending += 1
        self._queue.put_nowait(job)
        self.start()

    def run_remote(
        self,
        call: Awaitable[T],
        on_success: Callable[[T], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> asyncio.Task[None]:
        """
        Run a remote call without blocking the queue.

        The completion handler (on_success or on_error) is queued as a job once
        the call finishes. Failures with no on_error handler are logged.

        Args:
            call: Awaitable performing the remote request.
            on_success: Receives the call's result.
            on_error: Receives the exception raised by the call.

        Returns:
            The task running the call.
        """

        async def runner() -> None:
            try:
                result = await call
            except Exception as e:
                if on_error is not None:
                    self.enqueue(lambda error=e: on_error(error))
                else:
                    logger.error(f"Remote call failed: {e}", exc_info=e)
                return
            if on_success is not None:
                self.enqueue(lambda: on_success(result))

        task = asyncio.create_task(runner())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def drain(self) -> None:
        """Wait until the queue is empty and no remote call is in flight."""
        while True:
            if self._in_flight:
                await asyncio.gather(*list(self._in_flight), return_exceptions=True)
            if self._pending:
                self.start()
                await self._queue.join()
            if not self._in_flight and not self._pending:
                return

    async def close(self) -> None:
        """Stop the worker. Queued jobs that have not started are discarded."""
        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                logger.debug("Dispatcher worker cancelled")
        self._worker = None

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._pending = 0

        for task in list(self._in_flight):
            task.cancel()
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Dispatcher closed")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                result = job()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Dispatcher job failed: {e}", exc_info=True)
            finally:
                self._pending -= 1
                self._queue.task_done()
