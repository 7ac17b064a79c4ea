"""Fan a single producer out to any number of asyncio consumers."""

from __future__ import annotations

import asyncio
from typing import Generic, List, Set, TypeVar

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """An async iterator over items published after the subscription was made."""

    def __init__(self, broadcaster: "Broadcaster[T]") -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def _put(self, item) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return item

    def drain(self) -> List[T]:
        """Return everything already delivered, without waiting."""
        items: List[T] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._closed = True
                break
            items.append(item)
        return items

    def close(self) -> None:
        if self._closed:
            return
        self._broadcaster._discard(self)
        self._queue.put_nowait(_CLOSED)
        self._closed = True


class Broadcaster(Generic[T]):
    def __init__(self) -> None:
        self._subscriptions: Set[Subscription[T]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self)
        self._subscriptions.add(subscription)
        return subscription

    def publish(self, item: T) -> None:
        for subscription in list(self._subscriptions):
            subscription._put(item)

    def _discard(self, subscription: Subscription[T]) -> None:
        self._subscriptions.discard(subscription)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
