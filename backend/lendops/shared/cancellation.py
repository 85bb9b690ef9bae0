from __future__ import annotations

import threading
import time


class CancellationToken:
    """Cooperative cancellation for batch jobs (snapshots, replay).

    Long-running loops check ``cancelled`` before starting the next unit of
    work; a unit that already started always runs to completion.
    """

    def __init__(self, deadline_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + deadline_seconds if deadline_seconds is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False
