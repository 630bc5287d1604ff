from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from identity_pipeline.pipeline.delay import (
    ExponentialDelayStrategy,
    FixedDelayStrategy,
    parse_retry_after,
)


def test_fixed_delay_ignores_attempt() -> None:
    strategy = FixedDelayStrategy(2.5)
    assert [strategy.next_delay(attempt) for attempt in range(4)] == [2.5] * 4


def test_fixed_delay_prefers_larger_server_hint() -> None:
    strategy = FixedDelayStrategy(2.0)
    assert strategy.next_delay(0, server_hint=5.0) == 5.0
    assert strategy.next_delay(0, server_hint=1.0) == 2.0


def test_exponential_delay_doubles_until_cap() -> None:
    strategy = ExponentialDelayStrategy(1.0, 10.0, jitter=0.0)
    assert [strategy.next_delay(attempt) for attempt in range(6)] == [1, 2, 4, 8, 10, 10]


@pytest.mark.parametrize("attempt", range(6))
def test_exponential_jitter_stays_within_bounds(attempt: int) -> None:
    strategy = ExponentialDelayStrategy(1.0, 10.0, jitter=0.2)
    expected = min(10.0, 2.0**attempt)
    for _ in range(50):
        delay = strategy.next_delay(attempt)
        assert expected * 0.8 <= delay <= expected * 1.2
        assert delay <= 10.0


def test_exponential_jitter_range_passed_to_random_source() -> None:
    calls: list[tuple[float, float]] = []

    def _factor(low: float, high: float) -> float:
        calls.append((low, high))
        return high

    strategy = ExponentialDelayStrategy(1.0, 60.0, jitter=0.2, random_factor=_factor)
    assert strategy.next_delay(2) == pytest.approx(4.8)
    assert calls == [(0.8, 1.2)]


def test_server_hint_is_not_capped() -> None:
    strategy = ExponentialDelayStrategy(1.0, 10.0, jitter=0.0)
    assert strategy.next_delay(0, server_hint=30.0) == 30.0
    assert strategy.next_delay(3, server_hint=2.0) == 8.0


def test_huge_attempt_count_does_not_overflow() -> None:
    strategy = ExponentialDelayStrategy(0.8, 60.0, jitter=0.0)
    assert strategy.next_delay(10_000) == 60.0


def test_invalid_arguments_rejected() -> None:
    with pytest.raises(ValueError):
        FixedDelayStrategy(-1)
    with pytest.raises(ValueError):
        ExponentialDelayStrategy(1.0, 10.0, jitter=1.0)
    with pytest.raises(ValueError):
        ExponentialDelayStrategy(1.0, 10.0).next_delay(-1)


def test_parse_retry_after_seconds() -> None:
    assert parse_retry_after(httpx.Headers({"Retry-After": "7"})) == 7.0


def test_parse_retry_after_prefers_millisecond_headers() -> None:
    headers = httpx.Headers({"retry-after-ms": "1500", "Retry-After": "10"})
    assert parse_retry_after(headers) == 1.5
    assert parse_retry_after({"x-ms-retry-after-ms": "250"}) == 0.25


def test_parse_retry_after_http_date() -> None:
    now = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)
    headers = {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}
    assert parse_retry_after(headers, now=now) == 30.0


def test_parse_retry_after_past_date_is_zero() -> None:
    now = datetime(2015, 10, 21, 8, 0, 0, tzinfo=timezone.utc)
    headers = {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}
    assert parse_retry_after(headers, now=now) == 0.0


def test_parse_retry_after_missing_or_invalid() -> None:
    assert parse_retry_after({}) is None
    assert parse_retry_after({"Retry-After": "soon"}) is None
