"""Fixed-delay throttling for completion calls."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class Throttle:
    """Enforces a minimum gap between consecutive provider calls.

    The first call never waits. Shared by every component that calls the
    completion capability inside one batch.
    """

    delay_seconds: float = 1.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    _last_call: float | None = field(default=None, init=False, repr=False)

    def wait(self) -> float:
        """Block until the delay since the previous call has elapsed.

        Returns:
            Seconds actually slept
        """
        slept = 0.0
        if self._last_call is not None and self.delay_seconds > 0:
            elapsed = self.clock() - self._last_call
            remaining = self.delay_seconds - elapsed
            if remaining > 0:
                self.sleep(remaining)
                slept = remaining
        self._last_call = self.clock()
        return slept

    def reset(self) -> None:
        self._last_call = None
