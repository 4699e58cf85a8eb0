"""
Single-flight — collapse concurrent identical calls into one task.

The first caller for a key starts the work; later callers with the same key
await the same task. Each waiter awaits through asyncio.shield(), so one
waiter being cancelled does not cancel the work for the others. The shared
task is cancelled only when its last waiter is.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger("insights-query.executor")


class _Call:
    __slots__ = ("task", "waiters")

    def __init__(self, task: asyncio.Future):
        self.task = task
        self.waiters = 0


class SingleFlight:
    """Per-key deduplication of in-flight coroutines (one event loop)."""

    def __init__(self):
        self._calls: dict[Hashable, _Call] = {}

    @property
    def in_flight(self) -> int:
        return len(self._calls)

    def _forget(self, key: Hashable, call: _Call) -> None:
        if self._calls.get(key) is call:
            del self._calls[key]

    async def do(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        call = self._calls.get(key)
        if call is None:
            call = _Call(asyncio.ensure_future(factory()))
            self._calls[key] = call
            call.task.add_done_callback(lambda _task, k=key, c=call: self._forget(k, c))
        else:
            logger.debug("Joining in-flight call (%d waiting)", call.waiters)

        call.waiters += 1
        try:
            return await asyncio.shield(call.task)
        except asyncio.CancelledError:
            if call.waiters == 1 and not call.task.done():
                call.task.cancel()
            raise
        finally:
            call.waiters -= 1
