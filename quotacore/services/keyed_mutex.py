from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar


T = TypeVar("T")


class KeyedMutex:
    """Fair per-key exclusion for coroutines on one event loop.

    Waiters for a key are granted the section in arrival order. ``release``
    hands ownership directly to the next live waiter, so a newcomer can never
    slip in between a release and the wake-up of the waiter it was meant for.
    Keys with no holder and no waiters leave no bookkeeping behind.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._waiters: dict[str, deque[asyncio.Future[None]]] = {}

    def locked(self, key: str) -> bool:
        return key in self._held

    def waiting(self, key: str) -> int:
        queue = self._waiters.get(key)
        return sum(1 for waiter in queue if not waiter.done()) if queue else 0

    async def acquire(self, key: str) -> None:
        if key not in self._held:
            self._held.add(key)
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(key, deque()).append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            # Ownership may already have been handed over; pass it on instead of stalling the key.
            if waiter.done() and not waiter.cancelled():
                self.release(key)
            raise

    def release(self, key: str) -> None:
        if key not in self._held:
            raise RuntimeError(f"release of unheld key: {key}")
        queue = self._waiters.get(key)
        while queue:
            waiter = queue.popleft()
            if waiter.done():
                continue
            if not queue:
                del self._waiters[key]
            # Key stays held; the woken waiter owns it from here.
            waiter.set_result(None)
            return
        self._waiters.pop(key, None)
        self._held.discard(key)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        await self.acquire(key)
        try:
            yield
        finally:
            self.release(key)

    async def run_exclusive(self, key: str, task: Callable[[], Awaitable[T]]) -> T:
        async with self.hold(key):
            return await task()
