"""Single-flight coordination of expensive per-key work."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class AcquisitionCoordinator:
    """Run at most one ``work`` coroutine per key at a time.

    Callers racing for the same key await one shared task. The registration is
    dropped as soon as that task settles, whatever the outcome, so a failure is
    never remembered and the next call starts over.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    def pending_count(self) -> int:
        return len(self._inflight)

    async def acquire(self, key: Hashable, work: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            # No await between the lookup and the registration, so two callers
            # on the same loop cannot both start work for one key.
            task = asyncio.ensure_future(work())
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._settle(k, done))
            logger.debug("Acquisition started key=%s", key)
        else:
            logger.debug("Acquisition joined key=%s", key)
        # A waiter that gets cancelled (client went away) must not cancel the
        # shared task other waiters depend on.
        return await asyncio.shield(task)

    def _settle(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Acquisition failed key=%s error=%s", key, task.exception())
