from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryOutcome(Generic[T]):
    """Result of :func:`retry_until`; never raises past the attempt cap."""

    ok: bool
    value: Optional[T]
    attempts: int
    error: Optional[BaseException] = None


def retry_until(
    attempt: Callable[[], T],
    predicate: Callable[[T], bool] = bool,
    *,
    max_attempts: Optional[int] = None,
    backoff: float = 1.0,
    deadline: Optional[float] = None,
    exceptions: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    label: str = "attempt",
) -> RetryOutcome[T]:
    """
    Call ``attempt`` until ``predicate(result)`` holds.

    Stops after ``max_attempts`` calls or once another backoff would overrun
    ``deadline`` seconds (measured from the first call). Exceptions listed in
    ``exceptions`` count as a failed attempt; anything else propagates.
    Passing neither bound retries forever.
    """
    if max_attempts is not None and max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    started = clock()
    attempts = 0
    value: Optional[T] = None
    error: Optional[BaseException] = None

    while True:
        attempts += 1
        try:
            value = attempt()
            error = None
            if predicate(value):
                return RetryOutcome(True, value, attempts)
        except exceptions as exc:
            value = None
            error = exc
            logger.debug("%s %d failed: %s", label, attempts, exc)

        if max_attempts is not None and attempts >= max_attempts:
            break
        if deadline is not None and clock() - started + backoff > deadline:
            break
        if backoff > 0:
            sleep(backoff)

    logger.warning("%s gave up after %d attempts", label, attempts)
    return RetryOutcome(False, value, attempts, error)
