import math
import threading
import time
from typing import Callable, Optional
from grpcbridge.constants import MAX_DURATION_NANOS, NANOS_PER_SECOND


def duration_from_seconds(seconds: float) -> int:
    """Converts seconds to integer nanoseconds, clamped to the largest representable duration."""
    if math.isnan(seconds):
        raise ValueError("duration cannot be NaN")
    nanos = seconds * NANOS_PER_SECOND
    if nanos >= MAX_DURATION_NANOS:
        return MAX_DURATION_NANOS
    if nanos <= -MAX_DURATION_NANOS:
        return -MAX_DURATION_NANOS
    return int(nanos)


class InvocationContext:
    """Cancellation and deadline scope for one invocation.

    Children created with ``with_timeout`` are cancelled together with their
    parent and never outlive the parent's deadline. Callbacks registered
    with ``add_done_callback`` run once, on cancellation or when the
    deadline passes.
    """

    def __init__(self, deadline: Optional[float] = None, parent: 'InvocationContext' = None):
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks = []
        self._timer = None
        self.parent = parent
        self.deadline = deadline
        if parent is not None and parent.deadline is not None:
            if self.deadline is None or parent.deadline < self.deadline:
                self.deadline = parent.deadline
        if self.deadline is not None:
            interval = min(max(0.0, self.deadline - time.monotonic()), threading.TIMEOUT_MAX)
            self._timer = threading.Timer(interval, self.cancel)
            self._timer.daemon = True
            self._timer.start()
        if parent is not None:
            parent.add_done_callback(self.cancel)

    @classmethod
    def with_max_time(cls, seconds: float) -> 'InvocationContext':
        if seconds and seconds > 0:
            return cls(deadline=time.monotonic() + duration_from_seconds(seconds) / NANOS_PER_SECOND)
        return cls()

    def with_timeout(self, nanos: int) -> 'InvocationContext':
        return InvocationContext(deadline=time.monotonic() + nanos / NANOS_PER_SECOND, parent=self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def time_remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def add_done_callback(self, callback: Callable[[], None]):
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()

    def remove_done_callback(self, callback: Callable[[], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def cancel(self):
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks, self._callbacks = self._callbacks, []
        if self._timer is not None:
            self._timer.cancel()
        for callback in callbacks:
            callback()

    def close(self):
        """Releases the deadline timer and detaches from the parent without cancelling."""
        if self._timer is not None:
            self._timer.cancel()
        if self.parent is not None:
            self.parent.remove_done_callback(self.cancel)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
