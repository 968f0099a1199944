"""Ordered worker pool and run deadline shared by the checkers."""

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEADLINE_EXCEEDED = "Run deadline exceeded"


class Deadline:
    """Wall-clock budget for a whole run.

    Calls not yet issued when the budget runs out resolve to an error
    without touching the network. Calls already in flight are bounded by
    their own timeout only.

    Example:
        deadline = Deadline(300)
        if deadline.expired():
            ...
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at


def deadline_expired(deadline: Deadline | None) -> bool:
    return deadline is not None and deadline.expired()


def run_ordered(func: Callable[[T], R], items: Sequence[T], max_workers: int = 1) -> list[R]:
    """Apply ``func`` to every item and return results in input order.

    With ``max_workers`` of 1 items are processed one after the other in the
    calling thread. Otherwise a bounded thread pool runs them concurrently;
    ``Executor.map`` keeps the input order regardless of completion order.
    ``func`` is expected to recover its own failures.
    """
    if max_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    workers = min(max_workers, len(items))
    logger.debug("Running %d items on %d workers", len(items), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sitesentry") as executor:
        return list(executor.map(func, items))
