from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

from identity_pipeline.utils import CancellationToken, await_with_cancellation, get_logger


logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlightCache(Generic[K, V]):
    """Builds each value at most once at a time and keeps it for good.

    Concurrent callers for the same key wait on the in-flight construction and
    then observe the same value. A construction that raises or is cancelled
    publishes nothing, so the next caller starts over. Values are only dropped
    through :meth:`invalidate` or :meth:`clear`.

    Instances are bound to the event loop they are first awaited on.
    """

    def __init__(self, name: str = "cache") -> None:
        self._name = name
        self._values: dict[K, V] = {}
        self._pending: dict[K, asyncio.Event] = {}

    async def get_or_create(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> V:
        while True:
            if key in self._values:
                return self._values[key]
            pending = self._pending.get(key)
            if pending is None:
                break
            await await_with_cancellation(pending.wait(), cancellation_token)

        done = asyncio.Event()
        self._pending[key] = done
        try:
            value = await await_with_cancellation(factory(), cancellation_token)
            self._values[key] = value
            logger.debug("Cached value created", cache=self._name, key=repr(key))
            return value
        finally:
            del self._pending[key]
            done.set()

    def peek(self, key: K) -> V | None:
        return self._values.get(key)

    def invalidate(self, key: K) -> V | None:
        removed = self._values.pop(key, None)
        if removed is not None:
            logger.debug("Cached value invalidated", cache=self._name, key=repr(key))
        return removed

    def clear(self) -> None:
        self._values.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


__all__ = ["SingleFlightCache"]
