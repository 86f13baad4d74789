"""
SingleFlight module for collapsing concurrent identical fetches into one call
"""

import threading
from concurrent.futures import Future
from typing import Callable, Dict, Tuple, TypeVar

T = TypeVar('T')


class SingleFlight:
    """
    Runs at most one call per key at a time

    Callers arriving while a call for the same key is in flight wait for it
    and receive its result, or its exception re-raised. The key is released
    as soon as the call finishes, so later callers start a fresh call.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}

    def do(self, key: str, fn: Callable[[], T]) -> Tuple[T, bool]:
        """
        Execute fn for key unless an identical call is already running

        Args:
            key: De-duplication key
            fn: Zero-argument callable performing the work

        Returns:
            (result, shared) where shared is True if the result came from
            another caller's in-flight call
        """
        with self._lock:
            future = self._in_flight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._in_flight[key] = future

        if not leader:
            return future.result(), True

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight
