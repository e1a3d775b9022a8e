from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError

OPERATIONS = frozenset(
    {
        "get_item",
        "put_item",
        "update_item",
        "delete_item",
        "query",
        "scan",
        "batch_get_item",
        "batch_write_item",
    }
)


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


def client_error(code: str, message: str = "", *, operation: str = "DynamoDB") -> ClientError:
    """A botocore ``ClientError`` carrying ``code``, as the real client raises it."""
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Low-level DynamoDB client double that replays expected calls in order.

    ``expected`` is either a partial request matched recursively (``ANY`` matches
    anything) or a callable that asserts on the request itself. Calls are recorded in
    ``calls`` and may arrive from several threads.
    """

    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self._lock = threading.Lock()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> FakeDynamoDBClient:
        if method not in OPERATIONS:
            raise ValueError(f"unsupported operation: {method}")
        with self._lock:
            self._expected.append(
                ExpectedCall(method=method, expected=expected, response=response, error=error)
            )
        return self

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {self._expected!r}")

    def calls_for(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        with self._lock:
            self.calls.append((method, dict(req)))
            if not self._expected:
                raise AssertionError(f"unexpected call: {method}")
            call = self._expected.pop(0)

        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(dict(call.expected), req, path=method)

        if call.error is not None:
            raise call.error

        return dict(call.response or {})

    def __getattr__(self, name: str) -> Callable[..., Mapping[str, Any]]:
        if name not in OPERATIONS:
            raise AttributeError(name)

        def operation(**kwargs: Any) -> Mapping[str, Any]:
            return self._handle(name, kwargs)

        return operation
