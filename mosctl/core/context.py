"""Cancellation and deadline token threaded through every blocking call."""

from __future__ import annotations

import threading
import time

from mosctl.core.errors import OperationCancelledError, TransportTimeoutError


class CallContext:
    """Carries an optional deadline and a cancel flag for one command.

    Pacing sleeps required by the hardware never consult this token; only
    network and serial I/O do.
    """

    def __init__(self, timeout_s: float | None = None) -> None:
        self._deadline = time.monotonic() + timeout_s if timeout_s else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self, operation: str) -> None:
        if self._cancelled.is_set():
            raise OperationCancelledError(f"{operation} cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise TransportTimeoutError(f"{operation} timed out")


def background() -> CallContext:
    return CallContext()
