from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of wall-clock time in unix seconds."""

    def now(self) -> float: ...


class SystemClock:
    def now(self) -> float:
        return time.time()


system_clock = SystemClock()

__all__ = ["Clock", "SystemClock", "system_clock"]
