"""Non-blocking admission control for concurrent tasks."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from arbiter.core.errors import AtCapacityError
from arbiter.core.logging import get_logger

_logger = get_logger("refinement.admission")


class AdmissionGate:
    """Caps the number of tasks in flight.

    Requests beyond capacity are rejected immediately with AtCapacityError,
    never queued. A slot is held for the whole ``async with`` block and
    released on exit, whether the block returns, raises or is cancelled.

    Usage:
        async with gate.slot():
            await backend.invoke(...)
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self.capacity - self._in_flight

    async def try_acquire(self) -> None:
        """Take a slot or raise AtCapacityError without waiting."""
        if self._semaphore.locked():
            _logger.warning("admission.rejected", capacity=self.capacity)
            raise AtCapacityError(self.capacity)
        await self._semaphore.acquire()
        self._in_flight += 1

    def release(self) -> None:
        self._in_flight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.try_acquire()
        try:
            yield
        finally:
            self.release()
