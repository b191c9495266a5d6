"""Collapse concurrent calls for the same key into one execution."""

import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Hashable


class SingleFlight:
    """
    Per-key call deduplication.

    While a call for a key is running, further calls for that key wait for
    it and receive the same result (or exception) instead of running again.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[Hashable, Future] = {}

    def do(self, key: Hashable, fn: Callable[[], Any]) -> Any:
        """
        Run `fn` for `key` unless a call for `key` is already in flight.

        Args:
            key: Deduplication key (e.g. athlete ID)
            fn: Zero-argument callable

        Returns:
            Result of the single execution
        """
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            return future.result()

        try:
            future.set_result(fn())
        except BaseException as e:
            future.set_exception(e)
        finally:
            with self._lock:
                del self._calls[key]

        return future.result()

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls
