from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from botocore.exceptions import ClientError

from .aws_errors import is_transient
from .aws_errors import map_client_error as _map_client_error
from .errors import OperationCancelledError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for unprocessed batch work and transient store errors.

    ``max_attempts`` counts every request for one unit of work, the first one included.
    The delay before retry ``n`` (1-based) is ``base_delay * 2 ** (n - 1)`` capped at
    ``max_delay``.
    """

    max_attempts: int = 8
    base_delay: float = 0.05
    max_delay: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValidationError("retry delays must be >= 0")

    def backoff_seconds(self, retry: int) -> float:
        seconds = self.base_delay * (2.0 ** (retry - 1))
        if seconds > self.max_delay:
            return self.max_delay
        return seconds

    def wait(self, retry: int, cancel: threading.Event | None = None) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("operation cancelled")
        delay = self.backoff_seconds(retry)
        if delay > 0:
            self.sleep(delay)


def call_with_retry[R](
    operation: str,
    fn: Callable[[], R],
    policy: RetryPolicy,
    *,
    cancel: threading.Event | None = None,
) -> R:
    attempt = 1
    while True:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError(f"{operation}: cancelled")
        try:
            return fn()
        except ClientError as err:
            if not is_transient(err) or attempt >= policy.max_attempts:
                raise _map_client_error(err) from err
            logger.warning(
                "%s: transient error %s (attempt %d/%d)",
                operation,
                err.response.get("Error", {}).get("Code"),
                attempt,
                policy.max_attempts,
            )
        policy.wait(attempt, cancel)
        attempt += 1
