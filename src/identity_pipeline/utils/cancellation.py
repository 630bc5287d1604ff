from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
CancelCallback = Callable[["CancellationToken"], None]


class CancellationError(asyncio.CancelledError):
    """A token request was abandoned through its cancellation token.

    Being an ``asyncio.CancelledError``, it passes through the
    ``except Exception`` handlers of the retry loop and the credential layer.
    """

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """Observer side of a :class:`CancellationTokenSource`.

    Passed down through ``get_token`` into the pipeline; checked before every
    attempt and raced against every wait.
    """

    __slots__ = ("_event", "_reason", "_callbacks")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    def on_cancel(self, callback: CancelCallback) -> Callable[[], None]:
        """Run ``callback`` once cancelled; returns a function that unsubscribes."""

        if self.cancelled:
            callback(self)
            return lambda: None
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _trigger(self, reason: str | None) -> bool:
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:  # pragma: no cover - misbehaving subscriber
                logger.exception("Cancellation callback raised an exception.")
        return True

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self._reason!r})"


class CancellationTokenSource:
    """Owns a token and cancels it; optionally follows a parent token."""

    __slots__ = ("_token", "_unlink_parent")

    def __init__(self, *, linked_token: CancellationToken | None = None) -> None:
        self._token = CancellationToken()
        self._unlink_parent: Callable[[], None] | None = None
        if linked_token is not None:
            self._unlink_parent = linked_token.on_cancel(
                lambda parent: self.cancel(reason=parent.reason)
            )

    @property
    def token(self) -> CancellationToken:
        return self._token

    def cancel(self, *, reason: str | None = None) -> bool:
        """Cancel the token; ``False`` when it was already cancelled."""

        return self._token._trigger(reason)

    def dispose(self) -> None:
        if self._unlink_parent is not None:
            unlink, self._unlink_parent = self._unlink_parent, None
            unlink()

    def __enter__(self) -> CancellationToken:
        return self._token

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()


def _discard(awaitable: Awaitable[object]) -> None:
    if asyncio.iscoroutine(awaitable):
        awaitable.close()
    elif isinstance(awaitable, asyncio.Future):
        awaitable.cancel()


async def await_with_cancellation(
    awaitable: Awaitable[T],
    token: CancellationToken | None,
) -> T:
    """Await ``awaitable`` unless ``token`` is cancelled first.

    On token cancellation the pending work is cancelled and
    :class:`CancellationError` raised. Cancelling the calling task cancels
    the work too and propagates unchanged.
    """

    if token is None:
        return await awaitable
    if token.cancelled:
        _discard(awaitable)
        raise CancellationError(token.reason)
    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        watcher.cancel()
    if work.done():
        return work.result()
    work.cancel()
    raise CancellationError(token.reason)


async def cancellable_sleep(delay: float, token: CancellationToken | None = None) -> None:
    """Suspend for ``delay`` seconds unless cancelled first."""

    if delay <= 0:
        if token is not None:
            token.raise_if_cancelled()
        return
    await await_with_cancellation(asyncio.sleep(delay), token)


__all__ = [
    "CancellationError",
    "CancellationToken",
    "CancellationTokenSource",
    "await_with_cancellation",
    "cancellable_sleep",
]
