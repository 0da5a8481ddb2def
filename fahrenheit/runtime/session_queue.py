"""Per-session sequential task queues.

Each session key owns a SessionTaskQueue: a FIFO of task factories drained by
a single worker task, so at most one task per key is in flight. Keys never
wait on each other. A failing task settles its own future with the error and
the worker moves on to the next one.

Queues exist only while they have work. Once a worker drains its queue it
removes itself from the registry, so the map does not grow with every key
ever seen.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from fahrenheit.observability.logging import get_logger

logger = get_logger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class SessionTaskQueue:
    """FIFO of tasks for one session key, drained by a single worker."""

    def __init__(
        self,
        session_key: str,
        on_drained: Callable[["SessionTaskQueue"], None] | None = None,
    ) -> None:
        self.session_key = session_key
        self._pending: deque[tuple[TaskFactory, asyncio.Future]] = deque()
        self._worker: asyncio.Task | None = None
        self._running = False
        self._on_drained = on_drained

    @property
    def busy(self) -> bool:
        """True while a task for this key is executing."""
        return self._running

    @property
    def idle(self) -> bool:
        return self._worker is None and not self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def enqueue(self, factory: TaskFactory) -> asyncio.Future:
        """Schedule a task after every task already queued for this key.

        Returns:
            Future settled with the task's result or exception
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._pending.append((factory, future))
        if self._worker is None:
            self._worker = loop.create_task(self._drain())
        return future

    async def close(self) -> None:
        """Cancel the worker and every task that has not started yet."""
        for _, future in self._pending:
            future.cancel()
        self._pending.clear()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def _drain(self) -> None:
        while self._pending:
            factory, future = self._pending.popleft()
            if future.cancelled():
                continue
            self._running = True
            try:
                result = await factory()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._running = False

        # No await between the empty check and this reset: an enqueue() that
        # runs after it always starts a fresh worker.
        self._worker = None
        if self._on_drained is not None:
            self._on_drained(self)


class SessionQueueRegistry:
    """Map from session key to its live SessionTaskQueue."""

    def __init__(self) -> None:
        self._queues: dict[str, SessionTaskQueue] = {}

    def enqueue(self, session_key: str, factory: TaskFactory) -> asyncio.Future:
        queue = self._queues.get(session_key)
        if queue is None:
            queue = SessionTaskQueue(session_key, on_drained=self._drop)
            self._queues[session_key] = queue
        return queue.enqueue(factory)

    def is_busy(self, session_key: str) -> bool:
        queue = self._queues.get(session_key)
        return queue is not None and queue.busy

    def active_keys(self) -> list[str]:
        """Session keys with queued or running work."""
        return list(self._queues)

    def __contains__(self, session_key: str) -> bool:
        return session_key in self._queues

    def __len__(self) -> int:
        return len(self._queues)

    async def close(self) -> None:
        queues = list(self._queues.values())
        self._queues.clear()
        for queue in queues:
            await queue.close()
        logger.debug("session_queues_closed", count=len(queues))

    def _drop(self, queue: SessionTaskQueue) -> None:
        if self._queues.get(queue.session_key) is queue and queue.idle:
            del self._queues[queue.session_key]
