from __future__ import annotations

from collections.abc import Iterator

import pytest

from identity_pipeline.auth.credential_pipeline import reset_default_pipeline

from tests.factories import make_clock
from tests.stubs import FrozenClock, RecordingSleeper


@pytest.fixture(autouse=True)
def _isolate_default_pipeline() -> Iterator[None]:
    """Every test starts without a process-wide credential pipeline."""

    reset_default_pipeline()
    yield
    reset_default_pipeline()


@pytest.fixture
def clock() -> FrozenClock:
    return make_clock()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()
