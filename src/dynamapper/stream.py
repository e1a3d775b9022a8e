from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from collections.abc import Callable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from .cursor import encode_cursor

logger = logging.getLogger(__name__)

type Fetch = Callable[[dict[str, Any] | None, int | None], Mapping[str, Any]]


@dataclass(frozen=True)
class QueryResponse[T]:
    items: list[T]
    count: int
    scanned_count: int
    last_evaluated_key: dict[str, Any] | None = None
    cursor: str | None = None
    consumed_capacity: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)


@dataclass(frozen=True)
class PageSource:
    """One independently paginated read: a query, a scan, or one parallel-scan segment."""

    fetch: Fetch
    start_key: dict[str, Any] | None = None
    index: str | None = None
    segment: int | None = None


@dataclass(frozen=True)
class _SegmentFailed:
    error: BaseException


@dataclass(frozen=True)
class _SegmentDone:
    segment: int


class ResultStream[T]:
    """Single-pass, lazily paginated stream of decoded items.

    Iterating yields items; :meth:`pages` yields one :class:`QueryResponse` per store
    page instead. Both draw from the same underlying requests, so the stream can only be
    consumed once. Store errors are raised from iteration and end the stream.
    :meth:`close` stops further page requests; results of requests already in flight are
    discarded.
    """

    def __init__(
        self,
        sources: Sequence[PageSource],
        *,
        decode: Callable[[Mapping[str, Any]], T],
        load_all: bool = False,
        limit: int | None = None,
        max_workers: int | None = None,
    ) -> None:
        if not sources:
            raise ValueError("at least one page source is required")
        self._sources = list(sources)
        self._decode = decode
        self._load_all = load_all
        self._limit = limit
        self._max_workers = max_workers or len(self._sources)
        self._cancel = threading.Event()
        self._page_iter: Iterator[QueryResponse[T]] | None = None
        self._buffer: deque[T] = deque()
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False

        self.count = 0
        self.scanned_count = 0
        self.consumed_capacity: list[dict[str, Any]] = []
        self.last_evaluated_keys: dict[int, dict[str, Any] | None] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_evaluated_key(self) -> dict[str, Any] | None:
        if len(self._sources) == 1:
            return self.last_evaluated_keys.get(0)
        for key in self.last_evaluated_keys.values():
            if key:
                return key
        return None

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        while not self._buffer:
            page = self._next_page()
            if page is None:
                raise StopIteration
            self._buffer.extend(page.items)
        return self._buffer.popleft()

    def __enter__(self) -> ResultStream[T]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def pages(self) -> Iterator[QueryResponse[T]]:
        while True:
            page = self._next_page()
            if page is None:
                return
            yield page

    def collect(self) -> QueryResponse[T]:
        items: list[T] = list(self._buffer)
        self._buffer.clear()
        for page in self.pages():
            items.extend(page.items)

        last = self.last_evaluated_key
        cursor = None
        if len(self._sources) == 1:
            source = self._sources[0]
            cursor = encode_cursor(last, index=source.index, segment=source.segment)
        return QueryResponse(
            items=items,
            count=self.count,
            scanned_count=self.scanned_count,
            last_evaluated_key=last,
            cursor=cursor,
            consumed_capacity=list(self.consumed_capacity),
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel.set()
        self._buffer.clear()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _next_page(self) -> QueryResponse[T] | None:
        if self._closed:
            return None
        if self._page_iter is None:
            if len(self._sources) == 1:
                self._page_iter = self._segment_pages(0, self._sources[0])
            else:
                self._page_iter = self._parallel_pages()
        try:
            page = next(self._page_iter)
        except StopIteration:
            self.close()
            return None
        except BaseException:
            self.close()
            raise

        self.count += page.count
        self.scanned_count += page.scanned_count
        self.consumed_capacity.extend(page.consumed_capacity)
        return page

    def _segment_pages(self, position: int, source: PageSource) -> Iterator[QueryResponse[T]]:
        remaining = self._limit
        start_key = source.start_key

        while not self._cancel.is_set():
            resp = source.fetch(start_key, remaining)
            if self._cancel.is_set():
                logger.debug("stream closed, discarding page for segment %s", source.segment)
                return

            raw_items = list(resp.get("Items") or [])
            if remaining is not None:
                raw_items = raw_items[:remaining]
                remaining -= len(raw_items)
            items = [self._decode(item) for item in raw_items]

            last = resp.get("LastEvaluatedKey") or None
            self.last_evaluated_keys[position] = last

            capacity = resp.get("ConsumedCapacity")
            yield QueryResponse(
                items=items,
                count=int(resp.get("Count", len(items))),
                scanned_count=int(resp.get("ScannedCount", len(items))),
                last_evaluated_key=last,
                cursor=encode_cursor(last, index=source.index, segment=source.segment),
                consumed_capacity=[capacity] if isinstance(capacity, dict) else list(capacity or []),
            )

            if not self._load_all or last is None:
                return
            if remaining is not None and remaining <= 0:
                return
            start_key = last

    def _parallel_pages(self) -> Iterator[QueryResponse[T]]:
        pages: queue.Queue[QueryResponse[T] | _SegmentFailed | _SegmentDone] = queue.Queue()

        def run(position: int, source: PageSource) -> None:
            try:
                for page in self._segment_pages(position, source):
                    pages.put(page)
            except BaseException as err:  # noqa: BLE001
                pages.put(_SegmentFailed(err))
                return
            pages.put(_SegmentDone(position))

        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="dynamapper-scan"
        )
        for position, source in enumerate(self._sources):
            self._executor.submit(run, position, source)

        pending = len(self._sources)
        while pending:
            msg = pages.get()
            if isinstance(msg, _SegmentDone):
                pending -= 1
                continue
            if isinstance(msg, _SegmentFailed):
                raise msg.error
            yield msg
