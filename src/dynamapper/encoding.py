from __future__ import annotations

import datetime as dt
import enum
import uuid
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

from .errors import ValidationError

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def to_dynamo_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str, bytes, bytearray, Decimal, Binary)):
        return value
    if isinstance(value, enum.Enum):
        return to_dynamo_value(value.value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in {float("inf"), float("-inf")}:
            raise ValidationError("NaN and infinity cannot be stored")
        return Decimal(repr(value))
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return {to_dynamo_value(v) for v in value}
    if isinstance(value, (list, tuple)):
        return [to_dynamo_value(v) for v in value]
    return value


def from_dynamo_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, Binary):
        return bytes(value.value)
    if isinstance(value, Mapping):
        return {k: from_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return {from_dynamo_value(v) for v in value}
    if isinstance(value, list):
        return [from_dynamo_value(v) for v in value]
    return value


def serialize_value(value: Any) -> dict[str, Any]:
    try:
        return _serializer.serialize(to_dynamo_value(value))
    except TypeError as err:
        raise ValidationError(str(err)) from err


def deserialize_value(av: Mapping[str, Any]) -> Any:
    return from_dynamo_value(_deserializer.deserialize(dict(av)))


def serialize_item(item: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in item.items():
        if value is None:
            continue
        if isinstance(value, (set, frozenset)) and not value:
            continue
        out[name] = serialize_value(value)
    return out


def deserialize_item(item: Mapping[str, Any]) -> dict[str, Any]:
    return {name: deserialize_value(av) for name, av in item.items()}
