from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

from .errors import DeadlineExceeded


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Deadline:
    """Time budget for one command invocation.

    Passed down to every runtime call. ``check`` raises once the budget is
    spent or the deadline was cancelled.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = float(seconds)
        self._clock = clock
        self._expires_at = clock() + self.seconds
        self._cancelled = False

    def remaining(self) -> float:
        if self._cancelled:
            return 0.0
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._cancelled or self._clock() >= self._expires_at

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def check(self, op: str = "operation") -> None:
        if self._cancelled:
            raise DeadlineExceeded(f"{op} cancelled")
        if self.expired:
            raise DeadlineExceeded(f"{op} exceeded its {self.seconds:g}s deadline")
