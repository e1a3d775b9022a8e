from __future__ import annotations

import base64
import datetime as dt
import json
import uuid
from collections.abc import Iterator, Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from .errors import ValidationError

if TYPE_CHECKING:
    from .model import Model
    from .options import CreateOptions, DestroyOptions, UpdateOptions


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


class Item(Mapping[str, Any]):
    """Attributes of one stored (or to-be-stored) item of a :class:`~dynamapper.model.Model`."""

    def __init__(self, model: Model, attrs: Mapping[str, Any] | None = None) -> None:
        self._model = model
        self._attrs: dict[str, Any] = dict(attrs or {})
        self._check_keys(self._attrs)

    @property
    def model(self) -> Model:
        return self._model

    def _check_keys(self, attrs: Mapping[str, Any]) -> None:
        for key_attr in self._model.definition.key_attributes():
            if attrs.get(key_attr) is None:
                raise ValidationError(f"item is missing key attribute: {key_attr}")

    def __getitem__(self, key: str) -> Any:
        return self._attrs[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._attrs)

    def __len__(self) -> int:
        return len(self._attrs)

    def __repr__(self) -> str:
        return f"{self._model.name}({self._attrs!r})"

    def get(self, key: str | None = None, default: Any = None) -> Any:
        if key is None:
            return dict(self._attrs)
        return self._attrs.get(key, default)

    def set(self, attrs: Mapping[str, Any] | None = None, /, **kwargs: Any) -> Item:
        updated = dict(self._attrs)
        updated.update(attrs or {})
        updated.update(kwargs)
        self._check_keys(updated)
        self._attrs = updated
        return self

    def key(self) -> dict[str, Any]:
        return {name: self._attrs[name] for name in self._model.definition.key_attributes()}

    def save(self, options: CreateOptions | None = None) -> Item:
        saved = self._model.create(self._attrs, options)
        self._attrs = dict(saved)
        return self

    def update(self, options: UpdateOptions | None = None) -> Item:
        updated = self._model.update(self._attrs, options)
        if updated is not None:
            self._attrs = dict(updated)
        return self

    def destroy(self, options: DestroyOptions | None = None) -> Item | None:
        return self._model.destroy(self.key(), options=options)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._attrs)

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self._attrs, default=_json_default, **kwargs)
