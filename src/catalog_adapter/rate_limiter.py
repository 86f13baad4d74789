"""
RateLimiter module for enforcing a minimum spacing between outbound calls
"""

import logging
import threading
import time
from typing import Optional

from catalog_adapter.cancellation import CancellationToken, interruptible_sleep

logger = logging.getLogger(__name__)


class RateLimiter:
    """Guarantees min_delay_ms between the start of any two calls through one client"""

    def __init__(self, min_delay_ms: int = 1000):
        if min_delay_ms < 0:
            raise ValueError(f"min_delay_ms must be >= 0, got {min_delay_ms}")
        self.min_delay_ms = min_delay_ms
        self.last_call_time: Optional[float] = None
        # Serialises read-sleep-write so concurrent callers queue behind each other
        self._lock = threading.Lock()

    def wait(self, cancel_token: Optional[CancellationToken] = None) -> None:
        """
        Block until min_delay_ms has elapsed since the last recorded call start,
        then record now as the new call start

        Args:
            cancel_token: Optional token that aborts the wait
        """
        with self._lock:
            if self.last_call_time is not None:
                min_delay = self.min_delay_ms / 1000.0
                time_since_last = time.monotonic() - self.last_call_time

                if time_since_last < min_delay:
                    delay = min_delay - time_since_last
                    logger.debug(f"Rate limit: waiting {delay:.3f}s before next call")
                    interruptible_sleep(delay, cancel_token)

            self.last_call_time = time.monotonic()

    def reset(self) -> None:
        """
        Forget the last call time so the next wait() returns immediately
        """
        with self._lock:
            self.last_call_time = None
