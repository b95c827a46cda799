"""Progress events and cooperative cancellation.

Stages report through a ``ProgressReporter`` and poll a
``CancellationToken`` at their boundaries; nothing is preempted mid-stage.
"""

import threading
from dataclasses import dataclass
from typing import Callable

from .errors import ProcessingCancelled


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    progress: float  # 0-1, non-decreasing within one run
    message: str
    iteration: int | None = None


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Forwards clamped, monotonic progress events to an optional callback."""

    def __init__(
        self,
        callback: ProgressCallback | None = None,
        start: float = 0.0,
        end: float = 1.0,
    ):
        self.callback = callback
        self.start = start
        self.end = end
        self.last = 0.0

    def report(
        self,
        stage: str,
        progress: float,
        message: str,
        iteration: int | None = None,
    ) -> None:
        local = max(0.0, min(1.0, progress))
        value = self.start + local * (self.end - self.start)
        value = max(self.last, value)
        self.last = value
        if self.callback is not None:
            self.callback(ProgressEvent(stage, value, message, iteration))

    def scaled(self, start: float, end: float) -> "ProgressReporter":
        """Reporter for a sub-stage mapped into ``[start, end]`` of this one."""
        span = self.end - self.start
        child = ProgressReporter(
            self.callback,
            self.start + start * span,
            self.start + end * span,
        )
        child.last = self.last
        return child


class CancellationToken:
    """Thread-safe cancel flag checked at stage boundaries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise ProcessingCancelled(stage)


def check_cancelled(token: CancellationToken | None, stage: str) -> None:
    if token is not None:
        token.raise_if_cancelled(stage)
