from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from .encoding import deserialize_item, serialize_item
from .errors import OperationCancelledError, PartialFailureError, ValidationError
from .expressions import ExpressionContext
from .retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from .item import Item
    from .model import Model
    from .options import BatchGetOptions, BatchWriteOptions

logger = logging.getLogger(__name__)

GET_CHUNK_SIZE = 100
WRITE_CHUNK_SIZE = 25


@dataclass(frozen=True)
class UnprocessedWrite:
    """A put or delete still pending when the retry budget ran out."""

    action: Literal["put", "delete"]
    attributes: dict[str, Any]


def _chunked[T](items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


def _run_chunks[C, R](
    operation: str,
    chunks: Sequence[C],
    run: Callable[[C, threading.Event], R],
    *,
    concurrency: int,
    cancel: threading.Event | None,
) -> list[R]:
    """Run ``run(chunk, stop)`` for every chunk and return results in chunk order.

    ``stop`` is set when the caller cancels or a chunk fails with a non-retryable error;
    chunks observe it before each request. Unprocessed work from every exhausted chunk is
    reported together in one :class:`PartialFailureError`, whose ``items`` hold the results
    of the chunks that finished followed by whatever the exhausted chunks returned.
    """
    stop = threading.Event()

    def guarded(chunk: C) -> R:
        try:
            return run(chunk, stop)
        except (PartialFailureError, OperationCancelledError):
            raise
        except BaseException:
            stop.set()
            raise

    def watch(chunk: C) -> R:
        if cancel is not None and cancel.is_set():
            stop.set()
        return guarded(chunk)

    workers = min(concurrency, len(chunks))
    outcomes: list[tuple[R | None, BaseException | None]] = []
    if workers <= 1:
        for chunk in chunks:
            try:
                outcomes.append((watch(chunk), None))
            except PartialFailureError as err:
                outcomes.append((None, err))
            except OperationCancelledError as err:
                outcomes.append((None, err))
                break
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"dynamapper-{operation}") as pool:
            futures = [pool.submit(watch, chunk) for chunk in chunks]
        for future in futures:
            err = future.exception()
            outcomes.append((None, err) if err is not None else (future.result(), None))

    errors = [err for _, err in outcomes if err is not None]
    for err in errors:
        if not isinstance(err, (PartialFailureError, OperationCancelledError)):
            raise err
    if any(isinstance(err, OperationCancelledError) for err in errors):
        raise OperationCancelledError(f"{operation}: cancelled")

    unprocessed: list[Any] = []
    partial: list[Any] = []
    for result, err in outcomes:
        if isinstance(err, PartialFailureError):
            unprocessed.extend(err.unprocessed)
            partial.extend(err.items)
        elif result is not None:
            partial.append(result)
    if unprocessed:
        raise PartialFailureError(operation=operation, unprocessed=unprocessed, items=partial)
    return [result for result, _ in outcomes if result is not None]


def _check_stop(operation: str, stop: threading.Event, cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        stop.set()
    if stop.is_set():
        raise OperationCancelledError(f"{operation}: cancelled")


def batch_get(model: Model, keys: Sequence[Any], options: BatchGetOptions) -> list[Item | None]:
    """Fetch ``keys`` in chunks of 100 and return items in input order.

    Duplicate keys are requested once. Missing keys are dropped unless
    ``options.include_missing`` is set, in which case ``None`` marks them. When the
    retry budget runs out, the :class:`PartialFailureError` carries the fetched items in
    input order as ``items``, with ``None`` for unprocessed or missing keys.
    """
    if not keys:
        return []

    table = model.table_name()
    policy = options.retry or model.retry_policy
    concurrency = options.concurrency or model.settings.batch_concurrency
    if concurrency <= 0:
        raise ValidationError("concurrency must be > 0")

    requested = [model.key_values(key) for key in keys]
    unique: dict[tuple[Any, ...], dict[str, Any]] = {}
    for key in requested:
        if key not in unique:
            unique[key] = model.serialize_key(*key)

    base_req: dict[str, Any] = {}
    if options.consistent_read:
        base_req["ConsistentRead"] = True
    if options.attributes is not None:
        model.definition.require_key_attributes(options.attributes)
        ctx = ExpressionContext()
        base_req["ProjectionExpression"] = ctx.projection(list(options.attributes))
        base_req["ExpressionAttributeNames"] = dict(ctx.names)

    def run(chunk: Sequence[dict[str, Any]], stop: threading.Event) -> list[dict[str, Any]]:
        pending = list(chunk)
        found: list[dict[str, Any]] = []
        attempt = 1
        while pending:
            _check_stop("batch_get", stop, options.cancel)
            request = {table: dict(base_req, Keys=pending)}
            model.logger.debug("batch_get_item %s (%d keys)", table, len(pending))
            resp = call_with_retry(
                "batch_get",
                lambda: model.client.batch_get_item(RequestItems=request),
                policy,
                cancel=stop,
            )
            found.extend(resp.get("Responses", {}).get(table, []))

            pending = list(resp.get("UnprocessedKeys", {}).get(table, {}).get("Keys") or [])
            if not pending:
                break
            if attempt >= policy.max_attempts:
                raise PartialFailureError(
                    operation="batch_get",
                    unprocessed=[deserialize_item(key) for key in pending],
                    items=[found],
                )
            logger.warning(
                "batch_get: %d unprocessed keys (attempt %d/%d)", len(pending), attempt, policy.max_attempts
            )
            _wait(policy, attempt, stop, options.cancel)
            attempt += 1
        return found

    def in_order(pages: Sequence[Sequence[dict[str, Any]]]) -> list[Item | None]:
        by_key: dict[tuple[Any, ...], Item] = {}
        for page in pages:
            for raw in page:
                item = model.item_from_store(raw)
                by_key[model.key_values(item)] = item
        return [by_key.get(key) for key in requested]

    try:
        pages = _run_chunks(
            "batch_get",
            _chunked(list(unique.values()), GET_CHUNK_SIZE),
            run,
            concurrency=concurrency,
            cancel=options.cancel,
        )
    except PartialFailureError as err:
        raise PartialFailureError(
            operation="batch_get", unprocessed=err.unprocessed, items=in_order(err.items)
        ) from err

    out = in_order(pages)
    if options.include_missing:
        return out
    return [item for item in out if item is not None]


def batch_write(
    model: Model,
    puts: Sequence[Mapping[str, Any]],
    deletes: Sequence[Any],
    options: BatchWriteOptions,
) -> None:
    """Put and delete items in chunks of 25.

    Puts are validated and timestamped like ``create``; lifecycle hooks do not run.
    """
    table = model.table_name()
    policy = options.retry or model.retry_policy
    concurrency = options.concurrency or model.settings.batch_concurrency
    if concurrency <= 0:
        raise ValidationError("concurrency must be > 0")

    requests: list[dict[str, Any]] = []
    for data in puts:
        item = model.prepare_put(data)
        requests.append({"PutRequest": {"Item": serialize_item(item)}})
    for key in deletes:
        requests.append({"DeleteRequest": {"Key": model.serialize_key(*model.key_values(key))}})
    if not requests:
        return

    def run(chunk: Sequence[dict[str, Any]], stop: threading.Event) -> None:
        pending = list(chunk)
        attempt = 1
        while pending:
            _check_stop("batch_write", stop, options.cancel)
            request = {table: pending}
            model.logger.debug("batch_write_item %s (%d requests)", table, len(pending))
            resp = call_with_retry(
                "batch_write",
                lambda: model.client.batch_write_item(RequestItems=request),
                policy,
                cancel=stop,
            )

            pending = list(resp.get("UnprocessedItems", {}).get(table) or [])
            if not pending:
                break
            if attempt >= policy.max_attempts:
                raise PartialFailureError(
                    operation="batch_write", unprocessed=[_unprocessed_write(r) for r in pending]
                )
            logger.warning(
                "batch_write: %d unprocessed items (attempt %d/%d)",
                len(pending),
                attempt,
                policy.max_attempts,
            )
            _wait(policy, attempt, stop, options.cancel)
            attempt += 1

    _run_chunks(
        "batch_write",
        _chunked(requests, WRITE_CHUNK_SIZE),
        run,
        concurrency=concurrency,
        cancel=options.cancel,
    )


def _wait(policy: RetryPolicy, attempt: int, stop: threading.Event, cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        stop.set()
    policy.wait(attempt, stop)


def _unprocessed_write(request: Mapping[str, Any]) -> UnprocessedWrite:
    if "PutRequest" in request:
        return UnprocessedWrite(action="put", attributes=deserialize_item(request["PutRequest"]["Item"]))
    return UnprocessedWrite(action="delete", attributes=deserialize_item(request["DeleteRequest"]["Key"]))
