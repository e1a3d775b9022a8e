from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_SCALAR_KINDS = frozenset({"S", "N", "BOOL", "NULL", "SS", "NS"})


@dataclass(frozen=True)
class Cursor:
    last_key: dict[str, Any]
    index: str | None = None
    segment: int | None = None


def _single(av: Any) -> tuple[str, Any]:
    if not isinstance(av, Mapping) or len(av) != 1:
        raise ValueError("attribute value must be a single-key map")
    ((kind, value),) = av.items()
    return str(kind), value


def _av_to_json(av: Any) -> dict[str, Any]:
    kind, value = _single(av)
    if kind in _SCALAR_KINDS:
        return {kind: value}
    if kind == "B":
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}
    if kind == "BS":
        return {"BS": [base64.b64encode(bytes(v)).decode("ascii") for v in value]}
    if kind == "L":
        return {"L": [_av_to_json(v) for v in value]}
    if kind == "M":
        return {"M": {str(k): _av_to_json(value[k]) for k in sorted(value)}}
    raise ValueError(f"unsupported attribute value type: {kind}")


def _av_from_json(enc: Any) -> dict[str, Any]:
    kind, value = _single(enc)
    if kind in _SCALAR_KINDS:
        return {kind: value}
    if kind == "B":
        return {"B": base64.b64decode(value)}
    if kind == "BS":
        return {"BS": [base64.b64decode(v) for v in value]}
    if kind == "L":
        return {"L": [_av_from_json(v) for v in value]}
    if kind == "M":
        return {"M": {str(k): _av_from_json(value[k]) for k in sorted(value)}}
    raise ValueError(f"unsupported attribute value type: {kind}")


def encode_cursor(
    last_key: Mapping[str, Any] | None,
    *,
    index: str | None = None,
    segment: int | None = None,
) -> str | None:
    if not last_key:
        return None

    payload: dict[str, Any] = {"lastKey": {str(k): _av_to_json(last_key[k]) for k in sorted(last_key)}}
    if index is not None:
        payload["index"] = index
    if segment is not None:
        payload["segment"] = segment

    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    try:
        data = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode("utf-8")
        parsed = json.loads(data)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValueError("cursor is not valid") from err

    if not isinstance(parsed, dict) or not isinstance(parsed.get("lastKey"), dict):
        raise ValueError("cursor lastKey is invalid")

    last_key = {str(k): _av_from_json(v) for k, v in parsed["lastKey"].items()}
    index = parsed.get("index")
    segment = parsed.get("segment")
    return Cursor(
        last_key=last_key,
        index=index if isinstance(index, str) else None,
        segment=segment if isinstance(segment, int) else None,
    )
