from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Optional, TypeVar

from google.api_core import exceptions as gexc

T = TypeVar("T")
logger = logging.getLogger(__name__)

_TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    gexc.Aborted,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, _TRANSIENT_EXCEPTIONS)


def with_firestore_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int = 6,
    base_delay_s: float = 0.2,
    max_delay_s: float = 5.0,
    cancel: Optional[threading.Event] = None,
) -> T:
    """
    Retry transient Firestore errors with exponential backoff + full jitter.

    Non-transient errors (including AlreadyExists from `create()`) propagate
    immediately. A set `cancel` event stops waiting between attempts.
    """
    waiter = cancel or threading.Event()
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if (not is_transient(e)) or attempt >= (max_attempts - 1):
                raise

            sleep_s = min(max_delay_s, base_delay_s * (2**attempt))
            logger.info("firestore_retry iteration=%d sleep_s=%.3f", attempt + 1, float(sleep_s))
            if waiter.wait(timeout=float(random.random() * float(sleep_s))):
                raise InterruptedError("retry cancelled") from e
            attempt += 1
