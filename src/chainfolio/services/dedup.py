"""Collapse concurrent identical requests into one in-flight task."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


class RequestDeduplicator(Generic[T]):
    """At most one in-flight task per key.

    The lookup and the registration happen without an await in between, so
    they are atomic on the event loop. Every caller for a key awaits the same
    task and observes the same result or the same exception. The pending entry
    is removed from the task's done callback, whatever the outcome.

    Example:
        dedup = RequestDeduplicator()
        balances = await dedup.run(f"balances:{address}", lambda: load(address))
    """

    def __init__(self, name: str = "dedup") -> None:
        self.name = name
        self._pending: dict[str, asyncio.Task[T]] = {}

    def _release(self, key: str, task: asyncio.Task[T]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the exception retrieved when every waiter went away
        if not task.cancelled():
            task.exception()

    def spawn(self, key: str, factory: Callable[[], Awaitable[T]]) -> asyncio.Task[T]:
        """Return the in-flight task for ``key``, creating it if needed.

        Args:
            key: Request identity.
            factory: Zero-argument coroutine factory, only called on creation.

        Returns:
            The shared task.
        """
        task = self._pending.get(key)
        if task is not None:
            log.debug("dedup_join_pending", name=self.name, key=key)
            return task

        task = asyncio.ensure_future(factory())
        self._pending[key] = task
        task.add_done_callback(lambda t: self._release(key, t))
        return task

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Await the shared task for ``key``.

        One caller being cancelled does not cancel the shared task.
        """
        task = self.spawn(key, factory)
        return await asyncio.shield(task)

    def is_pending(self, key: str) -> bool:
        """True while a task for ``key`` is in flight."""
        return key in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_tasks(self) -> list[asyncio.Task[Any]]:
        """Snapshot of in-flight tasks."""
        return list(self._pending.values())
