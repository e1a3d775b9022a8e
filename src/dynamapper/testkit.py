from __future__ import annotations

from .mocks import ANY, FakeDynamoDBClient, client_error
from .retry import RetryPolicy


def no_sleep(_: float) -> None:
    return None


def fast_retry(max_attempts: int = 3) -> RetryPolicy:
    """A retry policy that never sleeps, for exercising retry paths in tests."""
    return RetryPolicy(max_attempts=max_attempts, sleep=no_sleep)


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "client_error",
    "fast_retry",
    "no_sleep",
]
