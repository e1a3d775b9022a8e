from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from .errors import ValidationError

type Operator = Literal[
    "=",
    "<>",
    "<",
    "<=",
    ">",
    ">=",
    "between",
    "begins_with",
    "attribute_exists",
    "attribute_not_exists",
    "contains",
    "not_contains",
    "in",
]

KEY_OPERATORS: frozenset[str] = frozenset({"=", "<", "<=", ">", ">=", "between", "begins_with"})
FILTER_OPERATORS: frozenset[str] = KEY_OPERATORS | {
    "<>",
    "attribute_exists",
    "attribute_not_exists",
    "contains",
    "not_contains",
    "in",
}

MAX_IN_OPERANDS = 100


@dataclass(frozen=True)
class Condition:
    attribute: str
    op: Operator
    values: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if not self.attribute:
            raise ValidationError("condition attribute is required")
        if self.op not in FILTER_OPERATORS:
            raise ValidationError(f"unsupported operator: {self.op}")

        arity = len(self.values)
        if self.op == "between":
            if arity != 2:
                raise ValidationError("between requires two values")
        elif self.op in {"attribute_exists", "attribute_not_exists"}:
            if arity:
                raise ValidationError(f"{self.op} does not take a value")
        elif self.op == "in":
            if arity != 1 or not isinstance(self.values[0], tuple):
                raise ValidationError("in requires a single sequence of values")
            if not self.values[0]:
                raise ValidationError("in requires at least one value")
            if len(self.values[0]) > MAX_IN_OPERANDS:
                raise ValidationError(f"in supports maximum {MAX_IN_OPERANDS} values")
        elif arity != 1:
            raise ValidationError(f"{self.op} requires one value")

    @property
    def is_key_condition(self) -> bool:
        return self.op in KEY_OPERATORS


class KeyConditionChain[B]:
    """Operators DynamoDB accepts in a KeyConditionExpression."""

    def __init__(self, attribute: str, sink: Callable[[Condition], B]) -> None:
        self._attribute = attribute
        self._sink = sink

    def _add(self, op: Operator, *values: Any) -> B:
        return self._sink(Condition(attribute=self._attribute, op=op, values=values))

    def equals(self, value: Any) -> B:
        return self._add("=", value)

    def eq(self, value: Any) -> B:
        return self._add("=", value)

    def lt(self, value: Any) -> B:
        return self._add("<", value)

    def lte(self, value: Any) -> B:
        return self._add("<=", value)

    def gt(self, value: Any) -> B:
        return self._add(">", value)

    def gte(self, value: Any) -> B:
        return self._add(">=", value)

    def between(self, low: Any, high: Any) -> B:
        return self._add("between", low, high)

    def begins_with(self, prefix: Any) -> B:
        return self._add("begins_with", prefix)


class FilterConditionChain[B](KeyConditionChain[B]):
    """Operators DynamoDB accepts in a FilterExpression or ConditionExpression."""

    def ne(self, value: Any) -> B:
        return self._add("<>", value)

    def contains(self, value: Any) -> B:
        return self._add("contains", value)

    def not_contains(self, value: Any) -> B:
        return self._add("not_contains", value)

    def in_(self, values: Sequence[Any]) -> B:
        if isinstance(values, (str, bytes, bytearray)) or not isinstance(values, (Sequence, set, frozenset)):
            raise ValidationError("in requires a sequence of values")
        return self._add("in", tuple(values))

    def exists(self) -> B:
        return self._add("attribute_exists")

    def not_null(self) -> B:
        return self._add("attribute_exists")

    def null(self) -> B:
        return self._add("attribute_not_exists")
