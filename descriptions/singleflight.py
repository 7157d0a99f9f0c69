"""Coalescing of identical in-flight calls."""
import threading
from typing import Any, Callable, Dict, Hashable


class _Call:
    def __init__(self):
        self.done = threading.Event()
        self.result = None
        self.error = None


class SingleFlight:
    """
    Runs at most one call per key at a time.

    Threads asking for a key that is already in flight wait for the leader
    and receive its result, or its exception.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[Hashable, _Call] = {}

    def do(self, key: Hashable, fn: Callable[[], Any]) -> Any:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except Exception as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()

        return call.result

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)
