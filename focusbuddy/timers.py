from __future__ import annotations

import time
from typing import Callable


class DebounceTimer:
    """
    Single outstanding one-shot timer driven by the caller's loop.

    - arm(delay, on_fire) schedules on_fire at now + delay (no-op if already armed).
    - cancel() drops the pending callback.
    - poll(now) fires the callback once the deadline has passed.

    Nothing runs in the background: whoever owns the timer calls poll() from its
    own loop, so the callback executes on that loop.
    """

    def __init__(self) -> None:
        self._deadline: float | None = None
        self._on_fire: Callable[[], None] | None = None

    @property
    def armed(self) -> bool:
        return self._deadline is not None

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def arm(self, delay: float, on_fire: Callable[[], None], now: float | None = None) -> bool:
        if self._deadline is not None:
            return False
        ts = now if now is not None else time.time()
        self._deadline = ts + delay
        self._on_fire = on_fire
        return True

    def cancel(self) -> None:
        self._deadline = None
        self._on_fire = None

    def poll(self, now: float | None = None) -> bool:
        if self._deadline is None:
            return False
        ts = now if now is not None else time.time()
        if ts < self._deadline:
            return False
        on_fire = self._on_fire
        self.cancel()
        if on_fire is not None:
            on_fire()
        return True
