from __future__ import annotations

import asyncio
import time
from contextlib import AbstractContextManager
from types import TracebackType
from typing import Any

from structlog.contextvars import bound_contextvars

from identity_pipeline.auth.token_helper import parse_account_info
from identity_pipeline.auth.types import AccessToken
from identity_pipeline.pipeline.errors import AuthenticationFailedError, IdentityError
from identity_pipeline.utils import get_logger


logger = get_logger(__name__)


class DiagnosticScope:
    """Traces one logical operation: start, then success or failure.

    Binds ``operation`` (and any extra attributes) into the structlog context
    so that nested pipeline logs carry it too.
    """

    def __init__(self, name: str, *, credential: str | None = None, **attributes: Any) -> None:
        self.name = name
        self.credential = credential or name.split(".", 1)[0]
        self._attributes = attributes
        self._bound: AbstractContextManager[Any] | None = None
        self._started = 0.0
        self._completed = False

    def __enter__(self) -> "DiagnosticScope":
        self._bound = bound_contextvars(operation=self.name)
        self._bound.__enter__()
        self._started = time.perf_counter()
        logger.debug("Operation started", **self._attributes)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            duration_ms = round((time.perf_counter() - self._started) * 1000, 2)
            if exc is None:
                if not self._completed:
                    logger.debug("Operation succeeded", duration_ms=duration_ms)
            elif isinstance(exc, asyncio.CancelledError):
                logger.debug("Operation cancelled", duration_ms=duration_ms)
            else:
                logger.warning(
                    "Operation failed",
                    duration_ms=duration_ms,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
        finally:
            if self._bound is not None:
                self._bound.__exit__(exc_type, exc, tb)
                self._bound = None

    def succeeded(self, token: AccessToken | None = None, **attributes: Any) -> None:
        """Log completion; a JWT ``token`` adds the app, tenant and object it was issued to."""

        self._completed = True
        duration_ms = round((time.perf_counter() - self._started) * 1000, 2)
        if token is not None:
            attributes.setdefault("expires_on", token.expires_on)
            attributes.setdefault("refresh_on", token.refresh_on)
            account = parse_account_info(token.token)
            if account is not None:
                attributes.update(
                    client_id=account.client_id,
                    tenant_id=account.tenant_id,
                    object_id=account.object_id,
                )
        logger.info("Operation succeeded", duration_ms=duration_ms, **attributes)

    def fail_wrap(self, error: Exception) -> IdentityError:
        """Return the exception to raise for ``error`` escaping this scope.

        Identity errors are tagged with the credential name and returned as
        is; anything else becomes an :class:`AuthenticationFailedError`
        chained to the original.
        """

        if isinstance(error, IdentityError):
            return error.with_context(source=self.credential)
        wrapped = AuthenticationFailedError(
            f"{self.credential} authentication failed: {error}",
            source=self.credential,
            inner_error=error,
        )
        wrapped.__cause__ = error
        return wrapped


__all__ = ["DiagnosticScope"]
