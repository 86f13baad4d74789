"""
Cancellation module for stopping long-running fetch operations cooperatively
"""

import threading
import time
from typing import Optional


class OperationCancelledError(Exception):
    """Raised when an operation is aborted through its CancellationToken"""
    pass


class CancellationToken:
    """Thread-safe flag checked at every suspension point of a fetch operation"""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        """
        Signal cancellation to every operation holding this token

        Args:
            reason: Human readable reason included in the raised error
        """
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """
        Raise OperationCancelledError if cancellation has been requested

        Raises:
            OperationCancelledError: If the token is cancelled
        """
        if self._event.is_set():
            raise OperationCancelledError(f"Operation cancelled: {self.reason}")

    def sleep(self, seconds: float) -> None:
        """
        Sleep for the given duration, waking early if cancelled

        Args:
            seconds: Duration to sleep

        Raises:
            OperationCancelledError: If cancelled before or during the sleep
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        if self._event.wait(seconds):
            self.raise_if_cancelled()


def interruptible_sleep(seconds: float, cancel_token: Optional[CancellationToken] = None) -> None:
    """
    Sleep through the token when one is supplied, otherwise through time.sleep

    Args:
        seconds: Duration to sleep
        cancel_token: Optional token that can abort the sleep
    """
    if cancel_token is not None:
        cancel_token.sleep(seconds)
    else:
        time.sleep(seconds)
