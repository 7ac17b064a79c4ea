"""
FIFO counting semaphore for bounding in-flight model calls.

Unlike `asyncio.Semaphore`, a release with queued waiters hands the slot
directly to the oldest waiter. `available` is not incremented in that case,
so a newcomer calling `acquire()` at the same moment cannot barge ahead.

PROMPT> python -m neuronvault.batch.concurrency_limiter
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque

logger = logging.getLogger(__name__)


class ConcurrencyLimiter:
    def __init__(self, capacity: int = 3):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._available = capacity
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        return self._available

    @property
    def in_use(self) -> int:
        return self._capacity - self._available

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self._available > 0 and not self.waiting:
            self._available -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before the cancellation landed, pass it on.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self._available >= self._capacity:
            raise RuntimeError("ConcurrencyLimiter released more times than it was acquired")
        self._available += 1

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"ConcurrencyLimiter(capacity={self._capacity}, available={self._available}, waiting={self.waiting})"


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')

    async def worker(limiter: ConcurrencyLimiter, index: int) -> None:
        async with limiter:
            print(f"worker {index} running, {limiter!r}")
            await asyncio.sleep(0.1)

    async def main() -> None:
        limiter = ConcurrencyLimiter(capacity=2)
        await asyncio.gather(*(worker(limiter, index) for index in range(5)))
        print(f"done, {limiter!r}")

    asyncio.run(main())
