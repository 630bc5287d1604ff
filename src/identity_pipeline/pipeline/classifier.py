from __future__ import annotations

import asyncio
import socket
from typing import Callable, Iterable

import httpx

from identity_pipeline.pipeline.errors import TransportError


ExceptionPredicate = Callable[[BaseException], bool]

_NON_RETRIABLE_SERVER_STATUSES = frozenset({501, 505})

_TRANSIENT_HTTPX_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def _is_transient_exception(error: BaseException) -> bool:
    if isinstance(error, _TRANSIENT_HTTPX_ERRORS):
        return True
    if isinstance(error, (asyncio.TimeoutError, ConnectionError, socket.gaierror)):
        return True
    return False


class ResponseClassifier:
    """Decides whether a response or exception deserves another attempt.

    Defaults: 408, 429 and every 5xx except 501/505 are retriable; only
    transient transport exceptions (timeouts, resets, DNS) are retriable.
    ``exception_filter`` widens the exception set.
    """

    def __init__(
        self,
        *,
        retriable_statuses: Iterable[int] = (),
        non_retriable_statuses: Iterable[int] = (),
        exception_filter: ExceptionPredicate | None = None,
    ) -> None:
        self._extra = frozenset(retriable_statuses)
        self._excluded = frozenset(non_retriable_statuses)
        self._exception_filter = exception_filter

    def is_retriable_status(self, status_code: int) -> bool:
        if status_code in self._excluded:
            return False
        if status_code in self._extra:
            return True
        if status_code in {408, 429}:
            return True
        return 500 <= status_code <= 599 and status_code not in _NON_RETRIABLE_SERVER_STATUSES

    def is_retriable_response(self, response: httpx.Response) -> bool:
        return self.is_retriable_status(response.status_code)

    def is_retriable_exception(self, error: BaseException) -> bool:
        if isinstance(error, asyncio.CancelledError):
            return False
        candidate = error
        if isinstance(error, TransportError) and error.inner_error is not None:
            candidate = error.inner_error
        if _is_transient_exception(candidate):
            return True
        if self._exception_filter is not None:
            return bool(self._exception_filter(candidate))
        return False

    def is_error_response(self, response: httpx.Response) -> bool:
        return response.status_code >= 400


class ManagedIdentityResponseClassifier(ResponseClassifier):
    """Managed-identity endpoints answer 404 while an identity is propagating."""

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("retriable_statuses", (404,))
        kwargs.setdefault("non_retriable_statuses", (502,))
        super().__init__(**kwargs)


class ImdsResponseClassifier(ResponseClassifier):
    """IMDS additionally returns 410 while the instance metadata service restarts."""

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("retriable_statuses", (404, 410))
        super().__init__(**kwargs)


__all__ = [
    "ExceptionPredicate",
    "ResponseClassifier",
    "ManagedIdentityResponseClassifier",
    "ImdsResponseClassifier",
]
