from __future__ import annotations

import time
from typing import Callable, TypeVar

T = TypeVar("T")


def run_with_retry(
    *,
    operation: Callable[[], T],
    should_retry: Callable[[Exception], bool],
    max_retries: int = 3,
    base_delay_seconds: float = 2.0,
    sleep_fn: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """Run ``operation`` and retry it with exponential backoff.

    The n-th retry waits ``base_delay_seconds * 2**(n-1)``, so the defaults
    give delays of 2s, 4s and 8s for at most four attempts in total.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as error:  # noqa: BLE001
            if attempt >= max_retries or not should_retry(error):
                raise

            delay = base_delay_seconds * (2**attempt)
            if on_retry is not None:
                on_retry(attempt + 1, delay, error)
            sleep_fn(delay)
            attempt += 1
