from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from dynamapper.stream import PageSource, ResultStream


class _Pages:
    def __init__(self, pages: list[dict[str, Any]]) -> None:
        self._pages = pages
        self.requests: list[tuple[dict[str, Any] | None, int | None]] = []

    def __call__(self, start_key: dict[str, Any] | None, remaining: int | None) -> Mapping[str, Any]:
        self.requests.append((start_key, remaining))
        return self._pages[len(self.requests) - 1]


def _decode(raw: Mapping[str, Any]) -> int:
    return int(raw["n"])


def _stream(fetch: _Pages, **kwargs: Any) -> ResultStream[int]:
    return ResultStream([PageSource(fetch=fetch)], decode=_decode, **kwargs)


def test_iteration_is_lazy_and_follows_last_evaluated_key() -> None:
    fetch = _Pages(
        [
            {"Items": [{"n": 1}, {"n": 2}], "LastEvaluatedKey": {"k": {"N": "2"}}},
            {"Items": [{"n": 3}]},
        ]
    )
    stream = _stream(fetch, load_all=True)
    assert fetch.requests == []

    assert next(stream) == 1
    assert len(fetch.requests) == 1
    assert list(stream) == [2, 3]
    assert fetch.requests == [(None, None), ({"k": {"N": "2"}}, None)]
    assert stream.last_evaluated_key is None
    assert stream.closed


def test_without_load_all_only_one_page_is_read() -> None:
    fetch = _Pages([{"Items": [{"n": 1}], "LastEvaluatedKey": {"k": {"N": "1"}}}])
    stream = _stream(fetch)

    assert list(stream) == [1]
    assert stream.last_evaluated_key == {"k": {"N": "1"}}
    assert len(fetch.requests) == 1


def test_pages_yield_one_response_per_request() -> None:
    fetch = _Pages(
        [
            {
                "Items": [{"n": 1}],
                "LastEvaluatedKey": {"k": {"N": "1"}},
                "ConsumedCapacity": {"CapacityUnits": 1},
            },
            {"Items": [], "LastEvaluatedKey": {"k": {"N": "2"}}, "ScannedCount": 4},
            {"Items": [{"n": 2}]},
        ]
    )
    stream = _stream(fetch, load_all=True)

    pages = list(stream.pages())
    assert [p.items for p in pages] == [[1], [], [2]]
    assert pages[0].cursor is not None
    assert pages[2].cursor is None
    assert stream.scanned_count == 6
    assert stream.consumed_capacity == [{"CapacityUnits": 1}]


def test_limit_truncates_and_stops() -> None:
    fetch = _Pages(
        [
            {"Items": [{"n": 1}, {"n": 2}], "LastEvaluatedKey": {"k": {"N": "2"}}},
            {"Items": [{"n": 3}, {"n": 4}], "LastEvaluatedKey": {"k": {"N": "4"}}},
        ]
    )
    stream = _stream(fetch, load_all=True, limit=3)

    assert list(stream) == [1, 2, 3]
    assert fetch.requests == [(None, 3), ({"k": {"N": "2"}}, 1)]


def test_close_stops_further_requests() -> None:
    fetch = _Pages([{"Items": [{"n": 1}, {"n": 2}], "LastEvaluatedKey": {"k": {"N": "2"}}}])
    with _stream(fetch, load_all=True) as stream:
        assert next(stream) == 1

    assert stream.closed
    assert list(stream) == []
    assert len(fetch.requests) == 1


def test_fetch_error_propagates_and_closes() -> None:
    def fetch(start_key: dict[str, Any] | None, remaining: int | None) -> Mapping[str, Any]:
        raise RuntimeError("boom")

    stream = ResultStream([PageSource(fetch=fetch)], decode=_decode)
    with pytest.raises(RuntimeError, match="boom"):
        next(stream)
    assert stream.closed


def test_collect_includes_buffered_items_and_cursor() -> None:
    fetch = _Pages([{"Items": [{"n": 1}, {"n": 2}], "LastEvaluatedKey": {"k": {"S": "x"}}}])
    stream = _stream(fetch)
    assert next(stream) == 1

    resp = stream.collect()
    assert resp.items == [2]
    assert resp.last_evaluated_key == {"k": {"S": "x"}}
    assert resp.cursor is not None


def test_requires_a_source() -> None:
    with pytest.raises(ValueError):
        ResultStream([], decode=_decode)
