from __future__ import annotations

import random
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping

from identity_pipeline.utils import get_logger


_logger = get_logger(__name__)

RETRY_AFTER_HEADERS: tuple[tuple[str, float], ...] = (
    ("retry-after-ms", 1000.0),
    ("x-ms-retry-after-ms", 1000.0),
    ("retry-after", 1.0),
)


class DelayStrategy(ABC):
    """Computes how long to wait before the next attempt.

    ``attempt`` is zero-based: ``next_delay(0)`` is the wait after the first
    failed try. A server hint always wins when it is larger than the computed
    delay, and is honoured even above ``max_delay``.
    """

    def __init__(self, *, max_delay: float | None = None) -> None:
        if max_delay is not None and max_delay < 0:
            raise ValueError("max_delay must be non-negative")
        self.max_delay = max_delay

    @abstractmethod
    def _compute(self, attempt: int) -> float: ...

    def next_delay(self, attempt: int, server_hint: float | None = None) -> float:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        delay = self._compute(attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if server_hint is not None:
            return max(delay, server_hint)
        return delay


class FixedDelayStrategy(DelayStrategy):
    def __init__(self, delay: float, *, max_delay: float | None = None) -> None:
        super().__init__(max_delay=max_delay)
        if delay < 0:
            raise ValueError("delay must be non-negative")
        self.delay = delay

    def _compute(self, attempt: int) -> float:
        return self.delay


class ExponentialDelayStrategy(DelayStrategy):
    def __init__(
        self,
        delay: float = 0.8,
        max_delay: float = 60.0,
        *,
        jitter: float = 0.2,
        random_factor: Callable[[float, float], float] | None = None,
    ) -> None:
        super().__init__(max_delay=max_delay)
        if delay < 0:
            raise ValueError("delay must be non-negative")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        self.delay = delay
        self.jitter = jitter
        self._random_factor = random_factor or random.uniform

    def _compute(self, attempt: int) -> float:
        # Cap the exponent so huge attempt counts cannot overflow the float.
        exponential = self.delay * (2 ** min(attempt, 32))
        if not self.jitter:
            return exponential
        factor = self._random_factor(1 - self.jitter, 1 + self.jitter)
        return exponential * factor


def parse_retry_after(
    headers: Mapping[str, str],
    *,
    now: datetime | None = None,
) -> float | None:
    """Return the server-requested delay in seconds, or ``None`` when absent.

    Recognises millisecond variants first, then ``Retry-After`` as either
    delta-seconds or an HTTP-date.
    """

    lowered = {key.lower(): value for key, value in headers.items()}
    for name, divisor in RETRY_AFTER_HEADERS:
        raw = lowered.get(name)
        if raw is None:
            continue
        raw = raw.strip()
        try:
            return max(float(raw) / divisor, 0.0)
        except ValueError:
            if divisor != 1.0:
                _logger.debug("Invalid retry header", header=name, value=raw)
                continue
        try:
            retry_at = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            _logger.debug("Invalid Retry-After header", value=raw)
            continue
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        reference = now or datetime.now(timezone.utc)
        return max((retry_at - reference).total_seconds(), 0.0)
    return None


__all__ = [
    "DelayStrategy",
    "FixedDelayStrategy",
    "ExponentialDelayStrategy",
    "parse_retry_after",
]
