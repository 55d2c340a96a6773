import math
import time
from typing import Optional

from .errors import QueryTimeoutError


class Deadline:
    """
    Absolute point in time an operation has to finish by.
    A deadline without a timeout never expires.
    """

    def __init__(self, expires_at: Optional[float] = None) -> None:
        self.expires_at = expires_at

    @classmethod
    def after(cls, timeout_seconds: Optional[float]) -> "Deadline":
        if timeout_seconds is None:
            return cls()
        if timeout_seconds <= 0:
            raise ValueError("timeout must be > 0")
        return cls(time.monotonic() + float(timeout_seconds))

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def check(self, stage: str) -> None:
        if self.expired():
            raise QueryTimeoutError("deadline exceeded before %s" % stage)

    def timeout(self, default: float) -> float:
        """Socket-level timeout: the remaining time, capped by `default`."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.001, min(default, remaining))

    def max_execution_time(self) -> Optional[int]:
        """Whole seconds for the server-side `max_execution_time` setting."""
        remaining = self.remaining()
        if remaining is None:
            return None
        return max(1, int(math.ceil(remaining)))
