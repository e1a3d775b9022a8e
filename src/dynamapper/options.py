from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from .retry import RetryPolicy

type ReturnValues = Literal["NONE", "ALL_OLD", "UPDATED_OLD", "ALL_NEW", "UPDATED_NEW"]
type ConsumedCapacity = Literal["INDEXES", "TOTAL", "NONE"]


@dataclass(frozen=True)
class GetOptions:
    """Options for ``Model.get``.

    consistent_read: strongly consistent read (default eventually consistent).
    attributes: projection; ``None`` returns every attribute.
    return_consumed_capacity: passed through to DynamoDB when set.
    """

    consistent_read: bool = False
    attributes: Sequence[str] | None = None
    return_consumed_capacity: ConsumedCapacity | None = None


@dataclass(frozen=True)
class ConditionalOptions:
    """Condition shared by writes.

    expected: ``{attr: value}`` requires equality, ``{attr: {"Exists": bool}}`` requires
        presence/absence and ``{attr: {"<>": value}}`` requires inequality; entries are ANDed.
    condition_expression: raw ConditionExpression ANDed with ``expected``; its placeholders
        come from ``expression_attribute_names``/``expression_attribute_values``.
    """

    expected: Mapping[str, Any] | None = None
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, Any] | None = None
    return_consumed_capacity: ConsumedCapacity | None = None


@dataclass(frozen=True)
class CreateOptions(ConditionalOptions):
    """Options for ``Model.create``.

    overwrite: when ``False`` the put only succeeds if no item with the same key exists.
    return_values: ``NONE`` (default) or ``ALL_OLD``.
    """

    overwrite: bool = True
    return_values: ReturnValues = "NONE"


@dataclass(frozen=True)
class UpdateOptions(ConditionalOptions):
    """Options for ``Model.update``; ``return_values`` defaults to ``ALL_NEW``.

    With ``return_values="NONE"`` the store returns no attributes, so ``update`` returns
    ``None`` and after-update hooks are called with ``None``.
    """

    return_values: ReturnValues = "ALL_NEW"


@dataclass(frozen=True)
class DestroyOptions(ConditionalOptions):
    """Options for ``Model.destroy``; ``return_values`` defaults to ``ALL_OLD``."""

    return_values: ReturnValues = "ALL_OLD"


@dataclass(frozen=True)
class BatchGetOptions:
    """Options for ``Model.get_items``.

    include_missing: keep a ``None`` placeholder for keys that were not found instead of
        dropping them from the result.
    concurrency: chunks requested at once; ``None`` uses ``Settings.batch_concurrency``.
    retry: backoff for unprocessed keys and transient errors; ``None`` uses the model's policy.
    cancel: once set, no further chunk or retry request is issued.
    """

    consistent_read: bool = False
    attributes: Sequence[str] | None = None
    include_missing: bool = False
    concurrency: int | None = None
    retry: RetryPolicy | None = None
    cancel: threading.Event | None = field(default=None, compare=False)


@dataclass(frozen=True)
class BatchWriteOptions:
    concurrency: int | None = None
    retry: RetryPolicy | None = None
    cancel: threading.Event | None = field(default=None, compare=False)
