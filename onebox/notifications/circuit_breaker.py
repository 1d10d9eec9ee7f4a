"""Failure-counting circuit breaker for outbound notification channels."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Opens after ``threshold`` consecutive failures and stays open for
    ``reset_timeout`` seconds. The first call after the timeout is let
    through (half-open); a success closes the breaker again.
    """

    def __init__(
        self,
        name: str,
        threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.failure_count = 0
        self.is_open = False
        self.last_failure_time: Optional[datetime] = None
        self._opened_at: Optional[float] = None

    def allow_request(self) -> bool:
        if not self.is_open:
            return True
        if self._opened_at is not None and self._clock() - self._opened_at >= self.reset_timeout:
            self.is_open = False
            self.failure_count = 0
            logger.info(f"Circuit breaker for {self.name} half-open, allowing a trial request")
            return True
        return False

    def record_success(self) -> None:
        if self.failure_count or self.is_open:
            logger.info(f"Circuit breaker for {self.name} closed")
        self.reset()

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now(timezone.utc)
        if self.failure_count >= self.threshold and not self.is_open:
            self.is_open = True
            self._opened_at = self._clock()
            logger.warning(
                f"Circuit breaker for {self.name} opened after {self.failure_count} failures"
            )

    def reset(self) -> None:
        self.failure_count = 0
        self.is_open = False
        self.last_failure_time = None
        self._opened_at = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_open": self.is_open,
            "failure_count": self.failure_count,
            "last_failure_time": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
        }
