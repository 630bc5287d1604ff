from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar, Union

import httpx

from identity_pipeline.config.settings import RetryMode, RetryOptions
from identity_pipeline.pipeline.classifier import ResponseClassifier
from identity_pipeline.pipeline.delay import (
    DelayStrategy,
    ExponentialDelayStrategy,
    FixedDelayStrategy,
    parse_retry_after,
)
from identity_pipeline.pipeline.errors import IdentityError
from identity_pipeline.pipeline.pipeline import (
    RETRY_CONTEXT,
    HTTPPolicy,
    PipelineRequest,
    PipelineResponse,
)
from identity_pipeline.utils import CancellationToken, cancellable_sleep, get_logger


_logger = get_logger(__name__)

Outcome = Union[httpx.Response, PipelineResponse]
R = TypeVar("R", httpx.Response, PipelineResponse)
Sleeper = Callable[[float, Union[CancellationToken, None]], Awaitable[None]]


@dataclass(slots=True)
class RetryContext:
    """Progress of one retry loop; attempts are strictly sequential."""

    attempt: int = 0
    started_at: float = 0.0
    elapsed: float = 0.0
    last_server_delay: float | None = None
    last_retriable: bool | None = None
    last_status: int | None = None


def _http_response(outcome: Outcome) -> httpx.Response:
    if isinstance(outcome, PipelineResponse):
        return outcome.http_response
    return outcome


class RetryPolicy(HTTPPolicy):
    """Repeats a send while the outcome classifies as retriable.

    A response still retriable after ``max_retries`` extra attempts is returned
    as-is; an exception still retriable at that point is re-raised with the
    retry count attached. Cancellation during a wait aborts the loop.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        delay_strategy: DelayStrategy | None = None,
        classifier: ResponseClassifier | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.delay_strategy = delay_strategy or ExponentialDelayStrategy()
        self.classifier = classifier or ResponseClassifier()
        self._sleep: Sleeper = sleep or cancellable_sleep

    @classmethod
    def from_options(cls, options: RetryOptions, **kwargs) -> "RetryPolicy":
        strategy: DelayStrategy
        if options.mode is RetryMode.FIXED:
            strategy = FixedDelayStrategy(options.delay)
        else:
            strategy = ExponentialDelayStrategy(
                options.delay,
                options.max_delay,
                jitter=options.jitter,
            )
        return cls(max_retries=options.max_retries, delay_strategy=strategy, **kwargs)

    async def execute(
        self,
        attempt_fn: Callable[[], Awaitable[R]],
        *,
        classifier: ResponseClassifier | None = None,
        cancellation_token: CancellationToken | None = None,
        context: RetryContext | None = None,
    ) -> R:
        active = classifier or self.classifier
        state = context or RetryContext()
        state.started_at = time.monotonic()

        while True:
            if cancellation_token is not None:
                cancellation_token.raise_if_cancelled()

            server_delay: float | None = None
            try:
                outcome = await attempt_fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                retriable = active.is_retriable_exception(exc)
                state.last_retriable = retriable
                state.last_status = None
                if not retriable or state.attempt >= self.max_retries:
                    self._finish(state)
                    if isinstance(exc, IdentityError):
                        exc.with_context(retries=state.attempt)
                    if retriable:
                        _logger.warning(
                            "Retries exhausted after transport failures",
                            retries=state.attempt,
                            error=str(exc),
                        )
                    raise
                reason = type(exc).__name__
            else:
                response = _http_response(outcome)
                retriable = active.is_retriable_response(response)
                state.last_retriable = retriable
                state.last_status = response.status_code
                if not retriable or state.attempt >= self.max_retries:
                    self._finish(state)
                    if retriable:
                        _logger.warning(
                            "Retries exhausted; returning last response",
                            status_code=response.status_code,
                            retries=state.attempt,
                        )
                    return outcome
                server_delay = parse_retry_after(response.headers)
                reason = str(response.status_code)

            state.last_server_delay = server_delay
            delay = self.delay_strategy.next_delay(state.attempt, server_delay)
            _logger.info(
                "Retrying request",
                attempt=state.attempt + 1,
                max_retries=self.max_retries,
                delay=round(delay, 3),
                reason=reason,
                server_delay=server_delay,
            )
            await self._sleep(delay, cancellation_token)
            state.attempt += 1

    async def send(self, request: PipelineRequest) -> PipelineResponse:
        state = RetryContext()
        request.context[RETRY_CONTEXT] = state
        return await self.execute(
            lambda: self.next.send(request),
            classifier=request.classifier,
            cancellation_token=request.cancellation_token,
            context=state,
        )

    @staticmethod
    def _finish(state: RetryContext) -> None:
        state.elapsed = time.monotonic() - state.started_at


def retry_count(context: dict) -> int:
    state = context.get(RETRY_CONTEXT)
    if isinstance(state, RetryContext):
        return state.attempt
    return 0


__all__ = ["RetryContext", "RetryPolicy", "Sleeper", "retry_count"]
