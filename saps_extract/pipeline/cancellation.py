from __future__ import annotations

import threading
import time
from typing import Callable


class CancellationToken:
    """Caller-owned stop signal, checked by the pipeline between batches."""

    def __init__(
        self,
        *,
        deadline_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = (
            None if deadline_seconds is None else clock() + deadline_seconds
        )

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    @property
    def reason(self) -> str | None:
        if self._event.is_set():
            return "cancelled"
        if self._deadline is not None and self._clock() >= self._deadline:
            return "deadline_exceeded"
        return None
