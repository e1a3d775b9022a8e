from __future__ import annotations

import threading
from typing import Any

import pytest

from dynamapper import ValidationError, define
from dynamapper.model import Model
from dynamapper.testkit import FakeDynamoDBClient, client_error, fast_retry


class _SegmentedClient:
    """Scan stub that spreads ``rows`` over segments and pages each segment by ``page_size``."""

    def __init__(self, rows: list[dict[str, Any]], *, page_size: int = 2) -> None:
        self._rows = rows
        self._page_size = page_size
        self._lock = threading.Lock()
        self.requests: list[dict[str, Any]] = []

    def scan(self, **req: Any) -> dict[str, Any]:
        with self._lock:
            self.requests.append(dict(req))
        total = req.get("TotalSegments", 1)
        segment = req.get("Segment", 0)
        mine = [r for i, r in enumerate(self._rows) if i % total == segment]

        start = 0
        if "ExclusiveStartKey" in req:
            start = int(req["ExclusiveStartKey"]["pos"]["N"])
        size = min(self._page_size, req.get("Limit", self._page_size))
        page = mine[start : start + size]

        resp: dict[str, Any] = {"Items": page, "Count": len(page), "ScannedCount": len(page)}
        if start + size < len(mine):
            resp["LastEvaluatedKey"] = {"id": page[-1]["id"], "pos": {"N": str(start + size)}}
        return resp


class _FailingSegmentClient(_SegmentedClient):
    def scan(self, **req: Any) -> dict[str, Any]:
        if req.get("Segment") == 1:
            raise client_error("AccessDeniedException", "denied")
        return super().scan(**req)


class _GatedClient(_SegmentedClient):
    """Holds every follow-up page request until ``gate`` is set."""

    def __init__(self, rows: list[dict[str, Any]], **kwargs: Any) -> None:
        super().__init__(rows, **kwargs)
        self.gate = threading.Event()
        self.blocked = 0
        self.in_flight = 0
        self.stream_closed = False
        self.after_close: list[dict[str, Any]] = []
        self._state = threading.Condition()

    def scan(self, **req: Any) -> dict[str, Any]:
        with self._state:
            if self.stream_closed:
                self.after_close.append(dict(req))
            self.in_flight += 1
        try:
            if "ExclusiveStartKey" in req:
                with self._state:
                    self.blocked += 1
                    self._state.notify_all()
                self.gate.wait(timeout=5)
            return super().scan(**req)
        finally:
            with self._state:
                self.in_flight -= 1
                self._state.notify_all()

    def wait_for(self, predicate: Any) -> bool:
        with self._state:
            return self._state.wait_for(predicate, timeout=5)


def _rows(n: int) -> list[dict[str, Any]]:
    return [{"id": {"S": f"item-{i:03d}"}, "n": {"N": str(i)}} for i in range(n)]


def _thing(client: Any) -> Model:
    return define("Thing", hash_key="id", table_name="things", client=client, retry_policy=fast_retry())


def test_scan_request_shape() -> None:
    thing = _thing(FakeDynamoDBClient())
    req = thing.scan().where("n").gt(3).filter("tags").contains("x").limit(10).build_request()

    assert req == {
        "TableName": "things",
        "FilterExpression": "#n > :n AND contains(#tags, :tags)",
        "Limit": 10,
        "ExpressionAttributeNames": {"#n": "n", "#tags": "tags"},
        "ExpressionAttributeValues": {":n": {"N": "3"}, ":tags": {"S": "x"}},
    }


def test_scan_single_segment() -> None:
    thing = _thing(FakeDynamoDBClient())
    req = thing.scan().segments(1, 4).build_request()
    assert req["Segment"] == 1
    assert req["TotalSegments"] == 4

    with pytest.raises(ValidationError):
        thing.scan().segments(4, 4)


def test_scan_load_all_pages_through_table() -> None:
    client = _SegmentedClient(_rows(5))
    thing = _thing(client)

    resp = thing.scan().load_all().collect()
    assert [item["id"] for item in resp] == [f"item-{i:03d}" for i in range(5)]
    assert len(client.requests) == 3


def test_parallel_scan_yields_every_item_exactly_once() -> None:
    rows = _rows(23)
    client = _SegmentedClient(rows)
    thing = _thing(client)

    resp = thing.parallel_scan(4, max_workers=2).load_all().collect()

    ids = [item["id"] for item in resp]
    assert sorted(ids) == sorted(r["id"]["S"] for r in rows)
    assert len(ids) == len(set(ids))
    assert resp.count == 23
    assert {r["Segment"] for r in client.requests} == {0, 1, 2, 3}
    assert all(r["TotalSegments"] == 4 for r in client.requests)
    assert resp.cursor is None


def test_parallel_scan_limit_applies_per_segment() -> None:
    client = _SegmentedClient(_rows(20))
    thing = _thing(client)

    resp = thing.parallel_scan(2).limit(3).load_all().collect()
    assert len(resp) == 6


def test_parallel_scan_error_is_raised_from_iteration() -> None:
    client = _FailingSegmentClient(_rows(10))
    thing = _thing(client)

    stream = thing.parallel_scan(3).load_all().exec()
    assert stream is not None
    with pytest.raises(Exception, match="denied"):
        list(stream)
    assert stream.closed


def test_closing_parallel_scan_stops_segment_paging() -> None:
    client = _GatedClient(_rows(12))
    stream = _thing(client).parallel_scan(2).load_all().exec()
    assert stream is not None

    first = next(stream)
    assert client.wait_for(lambda: client.blocked == 2)
    stream.close()
    client.stream_closed = True
    client.gate.set()
    assert client.wait_for(lambda: client.in_flight == 0)

    assert first["id"] in {"item-000", "item-001"}
    assert list(stream) == []
    assert stream.closed
    assert client.after_close == []
    positions = {int(r["ExclusiveStartKey"]["pos"]["N"]) for r in client.requests if "ExclusiveStartKey" in r}
    assert positions == {2}


def test_parallel_scan_validation() -> None:
    thing = _thing(FakeDynamoDBClient())
    with pytest.raises(ValidationError):
        thing.parallel_scan(0)
    with pytest.raises(ValidationError):
        thing.parallel_scan(2).segments(0, 2)
    with pytest.raises(ValidationError, match="single start key"):
        thing.parallel_scan(2).start_key("item-001").exec()


def test_segment_cursor_resumes_only_its_segment() -> None:
    client = _SegmentedClient(_rows(8))
    thing = _thing(client)

    first = thing.scan().segments(1, 2).limit(2).collect()
    assert [item["n"] for item in first] == [1, 3]
    assert first.cursor is not None

    rest = thing.scan().segments(1, 2).start_cursor(first.cursor).load_all().collect()
    assert [item["n"] for item in rest] == [5, 7]
    assert client.requests[-1]["Segment"] == 1

    with pytest.raises(ValidationError, match="cursor belongs to segment 1"):
        thing.scan().segments(0, 2).start_cursor(first.cursor).build_request()
