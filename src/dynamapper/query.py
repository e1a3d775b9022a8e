from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Executor, Future
from typing import TYPE_CHECKING, Any, Self

from .conditions import Condition, FilterConditionChain, KeyConditionChain
from .cursor import decode_cursor
from .encoding import serialize_value
from .errors import ValidationError
from .expressions import ExpressionContext, ExpressionFragment, join_conditions
from .retry import call_with_retry
from .stream import Fetch, PageSource, QueryResponse, ResultStream

if TYPE_CHECKING:
    from .item import Item
    from .model import Model

type Callback = Callable[[Exception | None, QueryResponse[Item] | None], None]

_SELECT_VALUES = frozenset({"ALL_ATTRIBUTES", "ALL_PROJECTED_ATTRIBUTES", "SPECIFIC_ATTRIBUTES", "COUNT"})


class ReadBuilder:
    """State shared by :class:`Query` and :class:`~dynamapper.scan.Scan`.

    Every option call returns the builder; nothing is sent until ``exec``, ``collect``
    or ``submit``.
    """

    operation = "read"

    def __init__(self, model: Model) -> None:
        self._model = model
        self._index: str | None = None
        self._filters = ExpressionFragment()
        self._limit: int | None = None
        self._consistent_read = False
        self._attributes: tuple[str, ...] | None = None
        self._start_key: dict[str, Any] | None = None
        self._start_segment: int | None = None
        self._start_index: str | None = None
        self._from_cursor = False
        self._load_all = False
        self._select: str | None = None
        self._return_consumed_capacity: str | None = None
        self._raw_filter: str | None = None
        self._raw_names: dict[str, str] = {}
        self._raw_values: dict[str, Any] = {}
        self._max_workers: int | None = None

    def limit(self, n: int) -> Self:
        if n <= 0:
            raise ValidationError("limit must be > 0")
        self._limit = n
        return self

    def using_index(self, name: str) -> Self:
        self._model.definition.index(name)
        self._index = name
        return self

    def consistent_read(self, flag: bool = True) -> Self:
        self._consistent_read = flag
        return self

    def attributes(self, attrs: str | Sequence[str]) -> Self:
        names = (attrs,) if isinstance(attrs, str) else tuple(attrs)
        if not names:
            raise ValidationError("attributes requires at least one attribute")
        self._attributes = names
        return self

    def projection_expression(self, attrs: str | Sequence[str]) -> Self:
        if isinstance(attrs, str):
            attrs = [a.strip() for a in attrs.split(",") if a.strip()]
        return self.attributes(attrs)

    def select(self, value: str) -> Self:
        if value not in _SELECT_VALUES:
            raise ValidationError(f"unsupported select value: {value}")
        self._select = value
        return self

    def return_consumed_capacity(self, value: str = "TOTAL") -> Self:
        if value not in {"INDEXES", "TOTAL", "NONE"}:
            raise ValidationError(f"unsupported return_consumed_capacity value: {value}")
        self._return_consumed_capacity = value
        return self

    def load_all(self) -> Self:
        self._load_all = True
        return self

    def start_key(self, hash_or_key: Any, range_value: Any | None = None) -> Self:
        if isinstance(hash_or_key, Mapping):
            if range_value is not None:
                raise ValidationError("range value is not allowed with a key mapping")
            self._start_key = {str(k): serialize_value(v) for k, v in hash_or_key.items()}
        else:
            self._start_key = self._model.serialize_key(hash_or_key, range_value)
        self._start_segment = None
        self._from_cursor = False
        return self

    def start_cursor(self, cursor: str) -> Self:
        try:
            decoded = decode_cursor(cursor)
        except ValueError as err:
            raise ValidationError("invalid cursor") from err
        self._start_key = decoded.last_key
        self._start_segment = decoded.segment
        self._start_index = decoded.index
        self._from_cursor = True
        return self

    def filter(self, attribute: str) -> FilterConditionChain[Self]:
        return FilterConditionChain(attribute, self.add_filter_condition)

    def add_filter_condition(self, cond: Condition) -> Self:
        self._filters = self._filters.append(cond)
        return self

    def filter_expression(self, expression: str) -> Self:
        self._raw_filter = expression
        return self

    def expression_attribute_names(self, names: Mapping[str, str]) -> Self:
        self._raw_names.update(names)
        return self

    def expression_attribute_values(self, values: Mapping[str, Any]) -> Self:
        self._raw_values.update(values)
        return self

    def build_request(self) -> dict[str, Any]:
        """The first-page request, validated; raises :class:`ValidationError` on misuse."""
        if self._from_cursor and self._start_index != self._index:
            raise ValidationError(f"cursor index does not match {self.operation}")
        ctx = ExpressionContext()
        ctx.merge(self._raw_names, self._raw_values)
        req = self._base_request(ctx)

        filter_expr = join_conditions(self._filters.compile(ctx), self._raw_filter)
        if filter_expr:
            req["FilterExpression"] = filter_expr
        if self._attributes is not None:
            self._model.definition.require_key_attributes(self._attributes)
            req["ProjectionExpression"] = ctx.projection(self._attributes)
        if self._select is not None:
            req["Select"] = self._select
        if self._return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = self._return_consumed_capacity
        if self._limit is not None:
            req["Limit"] = self._limit
        if self._start_key is not None:
            req["ExclusiveStartKey"] = dict(self._start_key)
        return ctx.apply(req)

    def exec(self, callback: Callback | None = None) -> ResultStream[Item] | None:
        """Without ``callback`` return a lazy :class:`ResultStream`.

        With ``callback`` read the result (every page under ``load_all``) and call
        ``callback(err, response)`` exactly once. Validation errors are raised in both
        forms before any request is sent.
        """
        stream = self._stream()
        if callback is None:
            return stream

        try:
            response = stream.collect()
        except Exception as err:
            callback(err, None)
            return None
        callback(None, response)
        return None

    def collect(self) -> QueryResponse[Item]:
        with self._stream() as stream:
            return stream.collect()

    def submit(self, executor: Executor) -> Future[QueryResponse[Item]]:
        stream = self._stream()
        return executor.submit(stream.collect)

    def _base_request(self, ctx: ExpressionContext) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self._model.table_name()}
        if self._index is not None:
            req["IndexName"] = self._index
        if self._consistent_read:
            if self._index is not None and self._model.definition.index(self._index).type == "GSI":
                raise ValidationError("consistent_read is not supported for GSIs")
            req["ConsistentRead"] = True
        return req

    def _sources(self, req: dict[str, Any]) -> list[PageSource]:
        return [
            PageSource(fetch=self._fetcher(req), start_key=req.get("ExclusiveStartKey"), index=self._index)
        ]

    def _fetcher(self, req: Mapping[str, Any]) -> Fetch:
        client = self._model.client
        call = getattr(client, self.operation)
        operation = self.operation
        model = self._model

        def fetch(start_key: dict[str, Any] | None, remaining: int | None) -> Mapping[str, Any]:
            page_req = dict(req)
            page_req.pop("ExclusiveStartKey", None)
            if start_key:
                page_req["ExclusiveStartKey"] = start_key
            if remaining is not None:
                page_req["Limit"] = remaining
            model.logger.debug("%s %s", operation, page_req.get("TableName"))
            return call_with_retry(operation, lambda: call(**page_req), model.retry_policy)

        return fetch

    def _stream(self) -> ResultStream[Item]:
        req = self.build_request()
        return ResultStream(
            self._sources(req),
            decode=self._model.item_from_store,
            load_all=self._load_all,
            limit=self._limit,
            max_workers=self._max_workers,
        )


class Query(ReadBuilder):
    """Single-partition read bounded by a hash key equality and an optional range condition."""

    operation = "query"

    def __init__(self, model: Model, hash_value: Any | None = None) -> None:
        super().__init__(model)
        self._hash_value = hash_value
        self._keys = ExpressionFragment()
        self._scan_forward = True

    def where(self, attribute: str) -> KeyConditionChain[Query]:
        return KeyConditionChain(attribute, self.add_key_condition)

    def add_key_condition(self, cond: Condition) -> Query:
        if not cond.is_key_condition:
            raise ValidationError(f"{cond.op} is not allowed in a key condition; use filter()")
        self._keys = self._keys.append(cond)
        return self

    def ascending(self) -> Query:
        self._scan_forward = True
        return self

    def descending(self) -> Query:
        self._scan_forward = False
        return self

    def _key_conditions(self) -> tuple[Condition, Condition | None]:
        hash_attr, range_attr = self._model.definition.key_schema(self._index)

        hash_conds: list[Condition] = []
        if self._hash_value is not None:
            hash_conds.append(Condition(attribute=hash_attr, op="=", values=(self._hash_value,)))
        range_conds: list[Condition] = []

        for cond in self._keys.conditions:
            if cond.attribute == hash_attr:
                if cond.op != "=":
                    raise ValidationError(f"hash key {hash_attr} only supports equality")
                hash_conds.append(cond)
            elif range_attr is not None and cond.attribute == range_attr:
                range_conds.append(cond)
            else:
                target = f"index {self._index}" if self._index else "table"
                raise ValidationError(f"{cond.attribute} is not a key of the {target}; use filter()")

        if len(hash_conds) != 1:
            raise ValidationError(f"query requires exactly one equality condition on hash key {hash_attr}")
        if len(range_conds) > 1:
            raise ValidationError(f"query allows at most one condition on range key {range_attr}")
        return hash_conds[0], range_conds[0] if range_conds else None

    def _base_request(self, ctx: ExpressionContext) -> dict[str, Any]:
        req = super()._base_request(ctx)
        hash_cond, range_cond = self._key_conditions()
        conds = [hash_cond] if range_cond is None else [hash_cond, range_cond]
        req["KeyConditionExpression"] = ExpressionFragment(tuple(conds)).compile(ctx)

        _, range_attr = self._model.definition.key_schema(self._index)
        if range_attr is not None:
            req["ScanIndexForward"] = self._scan_forward
        return req
