import threading
import time
from typing import Callable, Self
import structlog

from prescriber_geo.errors import DailyCapExceeded

logger = structlog.get_logger()


class RateLimiter:
    """
    Request spacing plus a per-run quota for one geocoding provider.

    Every worker thread talking to the same provider shares one limiter.
    Consecutive request starts are at least ``1 / requests_per_second`` apart,
    so N requests take at least ``(N - 1) / R`` seconds.

    Parameters
    ----------
    name : str, provider name used in errors and logs.
    requests_per_second : float, sustained request rate. None disables spacing.
    daily_cap : int, maximum records charged during this run. None means no cap.
    clock, sleep : callables, injectable for tests.
    """

    def __init__(
        self: Self,
        name: str,
        requests_per_second: float | None = None,
        daily_cap: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_second is not None and requests_per_second <= 0:
            raise ValueError(f"requests_per_second must be positive, got {requests_per_second}")
        self.name = name
        self.interval = 0.0 if requests_per_second is None else 1.0 / requests_per_second
        self.daily_cap = daily_cap
        self.used = 0
        self._clock = clock
        self._sleep = sleep
        self._next_slot: float | None = None
        self._lock = threading.Lock()

    @property
    def remaining(self: Self) -> int | None:
        return None if self.daily_cap is None else max(0, self.daily_cap - self.used)

    def acquire(self: Self, count: int = 1) -> None:
        """
        Block until the next request slot and charge ``count`` records to the quota.

        Raises DailyCapExceeded without consuming a slot if the charge would
        go over the cap.
        """
        with self._lock:
            if self.daily_cap is not None and self.used + count > self.daily_cap:
                raise DailyCapExceeded(
                    self.name, f"daily cap of {self.daily_cap} reached ({self.used} used)"
                )
            self.used += count

            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + self.interval
            wait = slot - now

        if wait > 0:
            self._sleep(wait)
