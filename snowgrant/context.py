import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import OperationCancelledError


@dataclass
class CallContext:
    """
    Caller-supplied cancellation for one host call.

    Checked before every round trip to Snowflake and during retry backoff. A
    cancelled call stops waiting client-side; the statement may still finish
    on the warehouse.

    `cancel()` does not interrupt an HTTP request already in flight. That
    request runs until it answers or its timeout expires, and the timeout is
    capped by `deadline`, so only a deadline bounds a blocked request.
    """

    cancel_event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "CallContext":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self):
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self):
        if self.cancel_event.is_set():
            raise OperationCancelledError("operation cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise OperationCancelledError("deadline exceeded")

    def timeout(self, default: float) -> float:
        if self.deadline is None:
            return default
        return max(0.0, min(default, self.deadline - time.monotonic()))

    def sleep(self, seconds: float):
        self.check()
        wait = self.timeout(seconds)
        if self.cancel_event.wait(wait):
            raise OperationCancelledError("operation cancelled")
        if wait < seconds:
            raise OperationCancelledError("deadline exceeded")


def background() -> CallContext:
    return CallContext()
