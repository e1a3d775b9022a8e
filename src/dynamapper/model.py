from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from botocore.exceptions import ClientError
from pydantic import BaseModel

from .aws_errors import map_client_error
from .batch import batch_get, batch_write
from .config import Settings
from .conditions import Condition
from .encoding import deserialize_item, from_dynamo_value, serialize_item, serialize_value, to_dynamo_value
from .errors import ModelDefinitionError, ValidationError
from .expressions import ADD, DELETE, ExpressionContext, compile_condition, conditions_from_expected
from .hooks import AfterHook, BeforeHook, LifecycleAction, LifecycleHooks
from .item import Item
from .options import (
    BatchGetOptions,
    BatchWriteOptions,
    ConditionalOptions,
    CreateOptions,
    DestroyOptions,
    GetOptions,
    UpdateOptions,
)
from .query import Query
from .retry import RetryPolicy
from .runtime import dynamo_driver
from .scan import Scan
from .validation import SchemaValidator, ValidationResult, validate_index_name, validate_table_name

type TableName = str | Callable[[], str]


@dataclass(frozen=True)
class Projection:
    type: str
    fields: tuple[str, ...] = ()

    @staticmethod
    def all() -> Projection:
        return Projection(type="ALL")

    @staticmethod
    def keys_only() -> Projection:
        return Projection(type="KEYS_ONLY")

    @staticmethod
    def include(*fields: str) -> Projection:
        return Projection(type="INCLUDE", fields=tuple(fields))


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    type: Literal["GSI", "LSI"]
    hash_key: str
    range_key: str | None = None
    projection: Projection = field(default_factory=Projection.all)


def gsi(
    name: str,
    *,
    hash_key: str,
    range_key: str | None = None,
    projection: Projection | None = None,
) -> IndexDefinition:
    return IndexDefinition(
        name=name,
        type="GSI",
        hash_key=hash_key,
        range_key=range_key,
        projection=projection or Projection.all(),
    )


def lsi(name: str, *, range_key: str, projection: Projection | None = None) -> IndexDefinition:
    # the table hash key is filled in by ModelDefinition.create
    return IndexDefinition(
        name=name, type="LSI", hash_key="", range_key=range_key, projection=projection or Projection.all()
    )


@dataclass(frozen=True)
class ModelDefinition:
    name: str
    table_name: TableName
    hash_key: str
    range_key: str | None
    validator: SchemaValidator
    indexes: tuple[IndexDefinition, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def create(
        cls,
        name: str,
        *,
        hash_key: str,
        range_key: str | None = None,
        table_name: TableName | None = None,
        schema: type[BaseModel] | None = None,
        indexes: Sequence[IndexDefinition] = (),
        timestamps: bool = False,
        created_at: str | Literal[False] = "createdAt",
        updated_at: str | Literal[False] = "updatedAt",
        strict: bool = False,
    ) -> ModelDefinition:
        if not name:
            raise ModelDefinitionError("model name is required")
        if not hash_key:
            raise ModelDefinitionError(f"model {name}: hash_key is required")
        if range_key is not None and range_key == hash_key:
            raise ModelDefinitionError(f"model {name}: range_key must differ from hash_key")
        if schema is not None and not (isinstance(schema, type) and issubclass(schema, BaseModel)):
            raise ModelDefinitionError(f"model {name}: schema must be a pydantic BaseModel subclass")

        validator = SchemaValidator(schema, strict=strict)
        known = validator.field_names()
        for key_attr in (hash_key, range_key):
            if schema is not None and key_attr is not None and key_attr not in known:
                raise ModelDefinitionError(f"model {name}: key attribute {key_attr} is not in the schema")

        if isinstance(table_name, str):
            try:
                validate_table_name(table_name)
            except ValidationError as err:
                raise ModelDefinitionError(f"model {name}: {err}") from err

        resolved: list[IndexDefinition] = []
        seen: set[str] = set()
        for idx in indexes:
            try:
                validate_index_name(idx.name)
            except ValidationError as err:
                raise ModelDefinitionError(f"model {name}: {err}") from err
            if idx.name in seen:
                raise ModelDefinitionError(f"model {name}: duplicate index name: {idx.name}")
            seen.add(idx.name)

            if idx.type == "LSI":
                if idx.hash_key and idx.hash_key != hash_key:
                    raise ModelDefinitionError(
                        f"index {idx.name}: LSI hash key must be the table hash key ({hash_key})"
                    )
                if range_key is None:
                    raise ModelDefinitionError(f"index {idx.name}: LSI requires a table range key")
                idx = IndexDefinition(
                    name=idx.name,
                    type="LSI",
                    hash_key=hash_key,
                    range_key=idx.range_key,
                    projection=idx.projection,
                )
            elif idx.type != "GSI":
                raise ModelDefinitionError(f"unsupported index type: {idx.type}")
            if not idx.hash_key:
                raise ModelDefinitionError(f"index {idx.name}: hash_key is required")
            for key_attr in (idx.hash_key, idx.range_key):
                if schema is not None and key_attr is not None and key_attr not in known:
                    raise ModelDefinitionError(f"index {idx.name}: unknown key attribute: {key_attr}")
            resolved.append(idx)

        return cls(
            name=name,
            table_name=table_name if table_name is not None else name,
            hash_key=hash_key,
            range_key=range_key,
            validator=validator,
            indexes=tuple(resolved),
            created_at=(created_at or None) if timestamps else None,
            updated_at=(updated_at or None) if timestamps else None,
        )

    def resolve_table_name(self) -> str:
        name = self.table_name() if callable(self.table_name) else self.table_name
        validate_table_name(name)
        return name

    def key_attributes(self) -> tuple[str, ...]:
        if self.range_key is None:
            return (self.hash_key,)
        return (self.hash_key, self.range_key)

    def index(self, name: str) -> IndexDefinition:
        for idx in self.indexes:
            if idx.name == name:
                return idx
        raise ValidationError(f"unknown index: {name}")

    def key_schema(self, index_name: str | None = None) -> tuple[str, str | None]:
        if index_name is None:
            return self.hash_key, self.range_key
        idx = self.index(index_name)
        return idx.hash_key, idx.range_key

    def require_key_attributes(self, attributes: Sequence[str]) -> None:
        missing = sorted(set(self.key_attributes()) - set(attributes))
        if missing:
            raise ValidationError(f"projection is missing key attributes: {missing}")


def _is_set_operation(value: Any) -> bool:
    return isinstance(value, Mapping) and set(value.keys()) in ({ADD}, {DELETE})


def _timestamp() -> str:
    now = dt.datetime.now(dt.UTC)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Model:
    """A registered model: definition, DynamoDB client and lifecycle hooks.

    Calling the model builds an unsaved :class:`Item`::

        Account = define("Account", hash_key="email", schema=AccountSchema)
        Account({"email": "a@example.com", "name": "A"}).save()
    """

    def __init__(
        self,
        definition: ModelDefinition,
        *,
        client: Any | None = None,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], str] = _timestamp,
    ) -> None:
        self.definition = definition
        self.settings = settings or Settings()
        self.retry_policy = retry_policy or self.settings.retry_policy()
        self.logger = logger or logging.getLogger(f"dynamapper.model.{definition.name}")
        self._client = client
        self._clock = clock
        self._hooks = LifecycleHooks(self.logger)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def client(self) -> Any:
        if self._client is None:
            return dynamo_driver()
        return self._client

    def __repr__(self) -> str:
        return f"Model({self.name!r})"

    def __call__(self, attrs: Mapping[str, Any] | None = None, /, **kwargs: Any) -> Item:
        data = dict(attrs or {})
        data.update(kwargs)
        return Item(self, data)

    def table_name(self) -> str:
        return self.definition.resolve_table_name()

    def before(self, action: LifecycleAction, hook: BeforeHook) -> None:
        self._hooks.before(action, hook)

    def after(self, action: LifecycleAction, hook: AfterHook) -> None:
        self._hooks.after(action, hook)

    def validate(self, data: Mapping[str, Any]) -> ValidationResult:
        return self.definition.validator.validate(data)

    # keys

    def key_values(self, key: Any) -> tuple[Any, ...]:
        """Normalize a hash value, ``(hash, range)`` tuple or mapping to a hashable key tuple."""
        hash_attr, range_attr = self.definition.hash_key, self.definition.range_key
        if isinstance(key, Mapping):
            values: tuple[Any, ...] = tuple(key.get(a) for a in self.definition.key_attributes())
        elif isinstance(key, tuple):
            values = key
            if range_attr is None and len(values) == 2 and values[1] is None:
                values = values[:1]
        else:
            values = (key,)

        expected = 1 if range_attr is None else 2
        if len(values) != expected:
            shape = "(hash, range)" if range_attr is not None else "a hash value"
            raise ValidationError(f"model {self.name}: expected key {shape}")
        for attr, value in zip((hash_attr, range_attr), values, strict=False):
            if value is None:
                raise ValidationError(f"model {self.name}: missing key attribute {attr}")
        return tuple(from_dynamo_value(to_dynamo_value(v)) for v in values)

    def serialize_key(self, hash_value: Any, range_value: Any | None = None) -> dict[str, Any]:
        if hash_value is None:
            raise ValidationError(f"model {self.name}: missing key attribute {self.definition.hash_key}")
        key = {self.definition.hash_key: serialize_value(hash_value)}
        if self.definition.range_key is None:
            if range_value is not None:
                raise ValidationError(f"model {self.name} has no range key")
            return key
        if range_value is None:
            raise ValidationError(f"model {self.name}: missing key attribute {self.definition.range_key}")
        key[self.definition.range_key] = serialize_value(range_value)
        return key

    def item_from_store(self, raw: Mapping[str, Any]) -> Item:
        return Item(self, deserialize_item(raw))

    # single-item operations

    def get(
        self,
        hash_value: Any,
        range_value: Any | None = None,
        options: GetOptions | None = None,
    ) -> Item | None:
        if isinstance(hash_value, Mapping) and range_value is None:
            hash_value, *rest = self.key_values(hash_value)
            range_value = rest[0] if rest else None
        opts = options or GetOptions()

        req: dict[str, Any] = {
            "TableName": self.table_name(),
            "Key": self.serialize_key(hash_value, range_value),
        }
        if opts.consistent_read:
            req["ConsistentRead"] = True
        if opts.attributes is not None:
            self.definition.require_key_attributes(opts.attributes)
            ctx = ExpressionContext()
            req["ProjectionExpression"] = ctx.projection(list(opts.attributes))
            ctx.apply(req)
        if opts.return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = opts.return_consumed_capacity

        self.logger.debug("get_item %s", req["TableName"])
        try:
            resp = self.client.get_item(**req)
        except ClientError as err:
            raise map_client_error(err) from err

        raw = resp.get("Item")
        if not raw:
            return None
        return self.item_from_store(raw)

    def prepare_put(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Validate ``data`` and stamp ``created_at``; the result is ready to serialize."""
        error, value = self.validate(data)
        if error is not None:
            raise error
        # DynamoDB cannot store empty sets
        item = {k: v for k, v in (value or {}).items() if not (isinstance(v, (set, frozenset)) and not v)}
        if self.definition.created_at is not None and item.get(self.definition.created_at) is None:
            item[self.definition.created_at] = self._clock()
        self.key_values(item)
        return item

    def create(self, data: Mapping[str, Any], options: CreateOptions | None = None) -> Item:
        opts = options or CreateOptions()
        candidate = self._hooks.run_before("create", data)
        item = self.prepare_put(candidate)

        ctx = ExpressionContext()
        stored = serialize_item(item)
        req: dict[str, Any] = {"TableName": self.table_name(), "Item": stored}
        conditions: list[Condition] = []
        if not opts.overwrite:
            conditions.extend(
                Condition(attribute=attr, op="attribute_not_exists")
                for attr in self.definition.key_attributes()
            )
        self._apply_conditions(ctx, req, opts, conditions)
        if opts.return_values != "NONE":
            req["ReturnValues"] = opts.return_values

        self.logger.debug("put_item %s", req["TableName"])
        try:
            self.client.put_item(**req)
        except ClientError as err:
            raise map_client_error(err) from err

        # stored form, as get() reads it back
        created = self.item_from_store(stored)
        self._hooks.run_after("create", created)
        return created

    def update(self, data: Mapping[str, Any], options: UpdateOptions | None = None) -> Item | None:
        """Partially update the item identified by the key attributes in ``data``.

        ``None`` removes an attribute, ``{"$add": v}`` adds to a number or set and
        ``{"$del": v}`` deletes elements from a set; any other value is SET.
        """
        opts = options or UpdateOptions()
        candidate = self._hooks.run_before("update", data)
        key = self.key_values(candidate)
        key_attrs = self.definition.key_attributes()

        updates = {k: v for k, v in candidate.items() if k not in key_attrs}
        if self.definition.updated_at is not None and updates.get(self.definition.updated_at) is None:
            updates[self.definition.updated_at] = self._clock()
        updates = self._validate_updates(updates)

        ctx = ExpressionContext()
        self._merge_raw(ctx, opts)
        req: dict[str, Any] = {
            "TableName": self.table_name(),
            "Key": self.serialize_key(*key),
            "UpdateExpression": ctx.update(updates),
        }
        self._apply_conditions(ctx, req, opts, [], merged=True)
        if opts.return_values != "NONE":
            req["ReturnValues"] = opts.return_values

        self.logger.debug("update_item %s", req["TableName"])
        try:
            resp = self.client.update_item(**req)
        except ClientError as err:
            raise map_client_error(err) from err

        attrs = resp.get("Attributes")
        updated = self.item_from_store({**req["Key"], **attrs}) if attrs else None
        self._hooks.run_after("update", updated)
        return updated

    def destroy(
        self,
        hash_or_item: Any,
        range_value: Any | None = None,
        options: DestroyOptions | None = None,
    ) -> Item | None:
        """Delete by hash (and range) value or by a mapping holding the key attributes."""
        opts = options or DestroyOptions()
        if isinstance(hash_or_item, Mapping):
            if range_value is not None:
                raise ValidationError("range value is not allowed with an item mapping")
            key_data = dict(zip(self.definition.key_attributes(), self.key_values(hash_or_item), strict=True))
        else:
            values = (hash_or_item,) if range_value is None else (hash_or_item, range_value)
            key_data = dict(zip(self.definition.key_attributes(), self.key_values(values), strict=True))

        key_data = self._hooks.run_before("destroy", key_data)
        ctx = ExpressionContext()
        req: dict[str, Any] = {
            "TableName": self.table_name(),
            "Key": self.serialize_key(*self.key_values(key_data)),
        }
        self._apply_conditions(ctx, req, opts, [])
        if opts.return_values != "NONE":
            req["ReturnValues"] = opts.return_values

        self.logger.debug("delete_item %s", req["TableName"])
        try:
            resp = self.client.delete_item(**req)
        except ClientError as err:
            raise map_client_error(err) from err

        attrs = resp.get("Attributes")
        destroyed = self.item_from_store({**req["Key"], **attrs}) if attrs else None
        self._hooks.run_after("destroy", destroyed)
        return destroyed

    # reads

    def query(self, hash_value: Any | None = None) -> Query:
        return Query(self, hash_value)

    def scan(self) -> Scan:
        return Scan(self)

    def parallel_scan(self, total_segments: int, *, max_workers: int | None = None) -> Scan:
        return Scan(self, total_segments=total_segments, max_workers=max_workers)

    # batch

    def get_items(self, keys: Sequence[Any], options: BatchGetOptions | None = None) -> list[Item | None]:
        return batch_get(self, keys, options or BatchGetOptions())

    batch_get_items = get_items

    def batch_write(
        self,
        puts: Sequence[Mapping[str, Any]] = (),
        deletes: Sequence[Any] = (),
        options: BatchWriteOptions | None = None,
    ) -> None:
        batch_write(self, puts, deletes, options or BatchWriteOptions())

    # helpers

    def _validate_updates(self, updates: Mapping[str, Any]) -> dict[str, Any]:
        plain = {k: v for k, v in updates.items() if not _is_set_operation(v)}
        error, validated = self.definition.validator.validate_fields(plain)
        if error is not None:
            raise error
        out = dict(updates)
        out.update(validated or {})
        return out

    @staticmethod
    def _merge_raw(ctx: ExpressionContext, opts: ConditionalOptions) -> None:
        ctx.merge(opts.expression_attribute_names, opts.expression_attribute_values)

    def _apply_conditions(
        self,
        ctx: ExpressionContext,
        req: dict[str, Any],
        opts: ConditionalOptions,
        conditions: list[Condition],
        *,
        merged: bool = False,
    ) -> None:
        if not merged:
            self._merge_raw(ctx, opts)
        if opts.expected:
            conditions = conditions + conditions_from_expected(opts.expected)
        expression = compile_condition(ctx, conditions, raw=opts.condition_expression)
        if expression:
            req["ConditionExpression"] = expression
        if opts.return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = opts.return_consumed_capacity
        ctx.apply(req)
