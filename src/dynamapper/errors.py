from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class DynamapperError(Exception):
    pass


class ConditionFailedError(DynamapperError):
    pass


class NotFoundError(DynamapperError):
    pass


class ValidationError(DynamapperError):
    def __init__(self, message: str, *, errors: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.errors = tuple(errors)


class ModelDefinitionError(DynamapperError, ValueError):
    pass


class ModelNotFoundError(DynamapperError, KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(f"model is not defined: {name}")
        self.name = name

    def __str__(self) -> str:
        return str(self.args[0])


class PartialFailureError(DynamapperError):
    def __init__(self, *, operation: str, unprocessed: Sequence[Any], items: Sequence[Any] = ()) -> None:
        super().__init__(f"{operation}: retry limit exceeded (unprocessed={len(unprocessed)})")
        self.operation = operation
        self.unprocessed = list(unprocessed)
        self.items = list(items)

    @property
    def unprocessed_count(self) -> int:
        return len(self.unprocessed)


class OperationCancelledError(DynamapperError):
    pass


class AwsError(DynamapperError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class TransientStoreError(AwsError):
    pass
