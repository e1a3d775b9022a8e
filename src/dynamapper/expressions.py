from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .conditions import Condition
from .encoding import serialize_value
from .errors import ValidationError
from .validation import split_attribute_path

ADD = "$add"
DELETE = "$del"

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def _sanitize(part: str) -> str:
    return _UNSAFE.sub("_", part) or "_"


class ExpressionContext:
    """Allocates ``#name``/``:value`` placeholders for one request.

    Placeholders derive from the attribute name; a ``_2``, ``_3``... suffix is appended
    when the derived placeholder is already taken, so the same sequence of calls always
    yields the same placeholders.
    """

    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}
        self._name_refs: dict[str, str] = {}

    def merge(
        self,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> None:
        for ref, attr in (names or {}).items():
            if not ref.startswith("#"):
                raise ValidationError(f"expression attribute name must start with '#': {ref}")
            existing = self.names.get(ref)
            if existing is not None and existing != attr:
                raise ValidationError(f"expression attribute name collision: {ref}")
            self.names[ref] = attr
        for ref, value in (values or {}).items():
            if not ref.startswith(":"):
                raise ValidationError(f"expression attribute value must start with ':': {ref}")
            if ref in self.values:
                raise ValidationError(f"expression attribute value collision: {ref}")
            self.values[ref] = serialize_value(value)

    def name(self, path: str) -> str:
        out = ""
        for part in split_attribute_path(path):
            if part.startswith("["):
                out += part
                continue
            ref = self._name_ref(part)
            out = f"{out}.{ref}" if out else ref
        return out

    def value(self, path: str, value: Any) -> str:
        leaf = [p for p in split_attribute_path(path) if not p.startswith("[")][-1]
        base = ":" + _sanitize(leaf)
        ref = base
        n = 1
        while ref in self.values:
            n += 1
            ref = f"{base}_{n}"
        self.values[ref] = serialize_value(value)
        return ref

    def _name_ref(self, part: str) -> str:
        existing = self._name_refs.get(part)
        if existing is not None:
            return existing
        for ref, attr in self.names.items():
            if attr == part:
                self._name_refs[part] = ref
                return ref

        base = "#" + _sanitize(part)
        ref = base
        n = 1
        while ref in self.names:
            n += 1
            ref = f"{base}_{n}"
        self.names[ref] = part
        self._name_refs[part] = ref
        return ref

    def condition(self, cond: Condition) -> str:
        name = self.name(cond.attribute)
        op = cond.op
        vals = cond.values

        if op in {"=", "<>", "<", "<=", ">", ">="}:
            return f"{name} {op} {self.value(cond.attribute, vals[0])}"
        if op == "between":
            low = self.value(cond.attribute, vals[0])
            high = self.value(cond.attribute, vals[1])
            return f"{name} BETWEEN {low} AND {high}"
        if op == "begins_with":
            return f"begins_with({name}, {self.value(cond.attribute, vals[0])})"
        if op == "contains":
            return f"contains({name}, {self.value(cond.attribute, vals[0])})"
        if op == "not_contains":
            return f"NOT contains({name}, {self.value(cond.attribute, vals[0])})"
        if op == "attribute_exists":
            return f"attribute_exists({name})"
        if op == "attribute_not_exists":
            return f"attribute_not_exists({name})"
        if op == "in":
            refs = [self.value(cond.attribute, v) for v in vals[0]]
            return f"{name} IN (" + ", ".join(refs) + ")"

        raise ValidationError(f"unsupported operator: {op}")

    def projection(self, attributes: Sequence[str]) -> str:
        if not attributes:
            raise ValidationError("projection requires at least one attribute")
        return ", ".join(self.name(attr) for attr in attributes)

    def update(self, updates: Mapping[str, Any]) -> str:
        set_parts: list[str] = []
        remove_parts: list[str] = []
        add_parts: list[str] = []
        delete_parts: list[str] = []

        for attr, value in updates.items():
            name = self.name(attr)
            if value is None:
                remove_parts.append(name)
            elif isinstance(value, Mapping) and set(value.keys()) == {ADD}:
                add_parts.append(f"{name} {self.value(attr, value[ADD])}")
            elif isinstance(value, Mapping) and set(value.keys()) == {DELETE}:
                delete_parts.append(f"{name} {self.value(attr, value[DELETE])}")
            else:
                set_parts.append(f"{name} = {self.value(attr, value)}")

        clauses: list[str] = []
        if set_parts:
            clauses.append("SET " + ", ".join(set_parts))
        if remove_parts:
            clauses.append("REMOVE " + ", ".join(remove_parts))
        if add_parts:
            clauses.append("ADD " + ", ".join(add_parts))
        if delete_parts:
            clauses.append("DELETE " + ", ".join(delete_parts))
        if not clauses:
            raise ValidationError("no updates provided")
        return " ".join(clauses)

    def apply(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.names:
            req["ExpressionAttributeNames"] = dict(self.names)
        if self.values:
            req["ExpressionAttributeValues"] = dict(self.values)
        return req


@dataclass(frozen=True)
class ExpressionFragment:
    """Conditions joined with AND, compiled against a shared :class:`ExpressionContext`."""

    conditions: tuple[Condition, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.conditions)

    def append(self, cond: Condition) -> ExpressionFragment:
        return ExpressionFragment(self.conditions + (cond,))

    def compile(self, ctx: ExpressionContext) -> str:
        return " AND ".join(ctx.condition(c) for c in self.conditions)


def conditions_from_expected(expected: Mapping[str, Any]) -> list[Condition]:
    out: list[Condition] = []
    for attr, value in expected.items():
        if isinstance(value, Mapping) and isinstance(value.get("Exists"), bool):
            op = "attribute_exists" if value["Exists"] else "attribute_not_exists"
            out.append(Condition(attribute=attr, op=op))
        elif isinstance(value, Mapping) and "<>" in value:
            out.append(Condition(attribute=attr, op="<>", values=(value["<>"],)))
        else:
            out.append(Condition(attribute=attr, op="=", values=(value,)))
    return out


def join_conditions(*expressions: str | None) -> str | None:
    parts = [e for e in expressions if e]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return " AND ".join(f"({p})" for p in parts)


def compile_condition(
    ctx: ExpressionContext,
    conditions: Iterable[Condition],
    *,
    raw: str | None = None,
) -> str | None:
    compiled = " AND ".join(ctx.condition(c) for c in conditions)
    return join_conditions(compiled, raw)
