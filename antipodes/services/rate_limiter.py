from typing import Optional

class RateLimiter:
    """
    Minimum-interval gate for repeated point selections.

    Timestamps are plain floats in seconds from the caller's monotonic clock.
    """

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self.last_call: Optional[float] = None

    def try_acquire(self, now: float) -> bool:
        """Claim the slot at `now`; False while still inside the interval."""
        if self.last_call is not None and now - self.last_call < self.min_interval:
            return False
        self.last_call = now
        return True
