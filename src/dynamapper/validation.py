from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import pydantic
from pydantic import BaseModel, TypeAdapter

from .errors import ValidationError

MaxAttributeNameLength = 255
MaxNestedDepth = 32

_PATH_SEGMENT = re.compile(r"^(?P<name>[^\x00-\x1f\x7f.\[\]]+)(?P<indexes>(?:\[[0-9]+\])*)$")
_LIST_INDEX = re.compile(r"\[[0-9]+\]")
_RESOURCE_NAME = re.compile(r"^[a-zA-Z0-9_.-]+$")


@dataclass(frozen=True)
class ValidationResult:
    error: ValidationError | None
    value: dict[str, Any] | None

    def __iter__(self) -> Iterator[Any]:
        return iter((self.error, self.value))


def split_attribute_path(path: str) -> list[str]:
    """Split ``a.b[2].c`` into ``["a", "b", "[2]", "c"]``, rejecting malformed paths."""
    if not path:
        raise ValidationError("attribute name cannot be empty")
    if len(path) > MaxAttributeNameLength:
        raise ValidationError("attribute name exceeds maximum length")

    parts: list[str] = []
    for segment in path.split("."):
        match = _PATH_SEGMENT.match(segment)
        if match is None:
            raise ValidationError(f"invalid attribute path: {path}")
        parts.append(match.group("name"))
        parts.extend(_LIST_INDEX.findall(match.group("indexes")))

    if len(parts) > MaxNestedDepth:
        raise ValidationError("nested attribute depth exceeds maximum")
    return parts


def validate_table_name(name: str) -> None:
    if len(name) < 3 or len(name) > 255:
        raise ValidationError(f"table name length invalid: {name!r}")
    if _RESOURCE_NAME.match(name) is None:
        raise ValidationError(f"table name contains invalid characters: {name!r}")


def validate_index_name(name: str) -> None:
    if len(name) < 3 or len(name) > 255:
        raise ValidationError(f"index name length invalid: {name!r}")
    if _RESOURCE_NAME.match(name) is None:
        raise ValidationError(f"index name contains invalid characters: {name!r}")


def _wrap(err: pydantic.ValidationError) -> ValidationError:
    return ValidationError(
        f"schema validation failed: {err.error_count()} error(s)",
        errors=err.errors(include_url=False),
    )


class SchemaValidator:
    """Adapts a pydantic model class to ``validate(candidate) -> (error, value)``."""

    def __init__(self, schema: type[BaseModel] | None, *, strict: bool = False) -> None:
        self._schema = schema
        self._strict = strict
        self._field_adapters: dict[str, TypeAdapter[Any]] = {}

    @property
    def schema(self) -> type[BaseModel] | None:
        return self._schema

    def field_names(self) -> frozenset[str]:
        if self._schema is None:
            return frozenset()
        names: set[str] = set()
        for name, info in self._schema.model_fields.items():
            names.add(info.alias or name)
        return frozenset(names)

    def validate(self, candidate: Mapping[str, Any]) -> ValidationResult:
        if self._schema is None:
            return ValidationResult(error=None, value=dict(candidate))
        try:
            model = self._schema.model_validate(dict(candidate), strict=self._strict)
        except pydantic.ValidationError as err:
            return ValidationResult(error=_wrap(err), value=None)
        return ValidationResult(error=None, value=model.model_dump(by_alias=True, exclude_none=True))

    def validate_fields(self, candidate: Mapping[str, Any]) -> ValidationResult:
        """Validate only the attributes present in ``candidate`` (partial updates)."""
        if self._schema is None:
            return ValidationResult(error=None, value=dict(candidate))

        out: dict[str, Any] = {}
        for name, value in candidate.items():
            adapter = self._adapter(name)
            if adapter is None or value is None:
                out[name] = value
                continue
            try:
                out[name] = adapter.dump_python(
                    adapter.validate_python(value, strict=self._strict), by_alias=True, exclude_none=True
                )
            except pydantic.ValidationError as err:
                return ValidationResult(error=_wrap(err), value=None)
        return ValidationResult(error=None, value=out)

    def _adapter(self, name: str) -> TypeAdapter[Any] | None:
        if self._schema is None:
            return None
        adapter = self._field_adapters.get(name)
        if adapter is not None:
            return adapter
        for field_name, info in self._schema.model_fields.items():
            if name in {field_name, info.alias}:
                adapter = TypeAdapter(info.annotation)
                self._field_adapters[name] = adapter
                return adapter
        return None
