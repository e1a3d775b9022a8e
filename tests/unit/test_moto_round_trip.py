from __future__ import annotations

import enum
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from pydantic import BaseModel

from dynamapper import ConditionFailedError, CreateOptions, UpdateOptions, define
from dynamapper.testkit import fast_retry


class Profile(BaseModel):
    city: str
    zip: str | None = None


class Status(enum.Enum):
    OPEN = "open"
    SHIPPED = "shipped"


class Order(BaseModel):
    customer: str
    placed: int
    total: float
    tags: set[str] | None = None
    profile: Profile | None = None
    lines: list[int] | None = None
    note: str | None = None
    at: datetime | None = None
    ref: uuid.UUID | None = None
    pair: tuple[int, int] | None = None
    status: Status | None = None
    createdAt: str | None = None  # noqa: N815
    updatedAt: str | None = None  # noqa: N815


@pytest.fixture
def orders(dynamodb: Any, make_table: Callable[..., str]) -> Any:
    make_table("orders", hash_key="customer", range_key="placed", attribute_types={"placed": "N"})
    return define(
        "Order",
        hash_key="customer",
        range_key="placed",
        table_name="orders",
        schema=Order,
        timestamps=True,
        client=dynamodb,
        retry_policy=fast_retry(),
    )


def test_create_then_get_round_trip(orders: Any) -> None:
    data = {
        "customer": "c1",
        "placed": 1,
        "total": 12.5,
        "tags": {"gift", "rush"},
        "profile": {"city": "Oslo"},
        "lines": [1, 2, 3],
        "at": datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        "ref": uuid.UUID("12345678-1234-5678-1234-567812345678"),
        "pair": (1, 2),
        "status": Status.SHIPPED,
    }

    created = orders.create(data)
    fetched = orders.get("c1", 1)

    assert fetched is not None
    assert fetched.to_dict() == created.to_dict()
    assert fetched["tags"] == {"gift", "rush"}
    assert fetched["profile"] == {"city": "Oslo"}
    assert fetched["total"] == 12.5
    assert isinstance(fetched["createdAt"], str)
    assert created["at"] == fetched["at"] == "2024-01-02T03:04:05+00:00"
    assert created["ref"] == "12345678-1234-5678-1234-567812345678"
    assert created["pair"] == fetched["pair"] == [1, 2]
    assert created["status"] == "shipped"


def test_conditional_create_fails_when_key_exists(orders: Any) -> None:
    orders.create({"customer": "c1", "placed": 1, "total": 1})

    with pytest.raises(ConditionFailedError):
        orders.create({"customer": "c1", "placed": 1, "total": 2}, CreateOptions(overwrite=False))

    fetched = orders.get("c1", 1)
    assert fetched is not None and fetched["total"] == 1


def test_update_and_destroy(orders: Any) -> None:
    orders.create({"customer": "c1", "placed": 1, "total": 1, "note": "hi", "tags": {"a", "b"}})

    updated = orders.update(
        {
            "customer": "c1",
            "placed": 1,
            "total": 3.5,
            "note": None,
            "tags": {"$del": {"a"}},
            "visits": {"$add": 2},
        }
    )
    assert updated is not None
    assert updated["total"] == 3.5
    assert "note" not in updated
    assert updated["tags"] == {"b"}
    assert updated["visits"] == 2
    assert isinstance(updated["updatedAt"], str)

    with pytest.raises(ConditionFailedError):
        orders.update({"customer": "c1", "placed": 1, "total": 9}, UpdateOptions(expected={"total": 1}))

    old = orders.destroy("c1", 1)
    assert old is not None and old["total"] == 3.5
    assert orders.get("c1", 1) is None


def test_pagination_matches_load_all(orders: Any) -> None:
    for placed in range(7):
        orders.create({"customer": "c1", "placed": placed, "total": placed})
    orders.create({"customer": "c2", "placed": 0, "total": 0})

    everything = [item.to_dict() for item in orders.query("c1").load_all().collect()]

    paged: list[dict[str, Any]] = []
    cursor: str | None = None
    while True:
        query = orders.query("c1").limit(3)
        if cursor is not None:
            query = query.start_cursor(cursor)
        resp = query.collect()
        paged.extend(item.to_dict() for item in resp)
        cursor = resp.cursor
        if cursor is None:
            break

    assert [item["placed"] for item in everything] == list(range(7))
    assert paged == everything


def test_query_range_condition_filter_and_order(orders: Any) -> None:
    for placed in range(6):
        orders.create({"customer": "c1", "placed": placed, "total": placed * 10})

    resp = orders.query("c1").where("placed").between(1, 4).filter("total").gte(20).descending().collect()
    assert [item["placed"] for item in resp] == [4, 3, 2]


def test_scan_and_batch_operations(orders: Any) -> None:
    orders.batch_write(puts=[{"customer": f"c{i}", "placed": i, "total": i} for i in range(30)])

    assert len(orders.scan().load_all().collect()) == 30

    keys = [(f"c{i}", i) for i in (5, 1, 29, 7)] + [("missing", 0)]
    items = orders.get_items(keys)
    assert [item["placed"] for item in items] == [5, 1, 29, 7]

    orders.batch_write(deletes=[(f"c{i}", i) for i in range(10)])
    assert len(orders.scan().load_all().collect()) == 20
