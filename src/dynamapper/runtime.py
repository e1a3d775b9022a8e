from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

from .config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AwsCallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool


def log_call_metric(metric: AwsCallMetric) -> None:
    logger.debug(
        "%s.%s %s in %.3fs",
        metric.service,
        metric.operation,
        "ok" if metric.ok else "failed",
        metric.seconds,
    )


def create_boto3_config(settings: Settings | None = None) -> Config:
    settings = settings or Settings()
    return Config(
        connect_timeout=settings.connect_timeout,
        read_timeout=settings.read_timeout,
        max_pool_connections=settings.max_pool_connections,
        retries={"max_attempts": settings.client_max_attempts, "mode": "adaptive"},
    )


class _InstrumentedClient:
    def __init__(self, client: Any, service: str, on_call: Callable[[AwsCallMetric], None]) -> None:
        self._client = client
        self._service = service
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            ok = False
            try:
                out = attr(*args, **kwargs)
                ok = True
                return out
            finally:
                self._on_call(
                    AwsCallMetric(
                        service=self._service,
                        operation=name,
                        seconds=time.monotonic() - start,
                        ok=ok,
                    )
                )

        return wrapped


def instrument_boto3_client(
    client: Any,
    *,
    service: str = "dynamodb",
    on_call: Callable[[AwsCallMetric], None] = log_call_metric,
) -> Any:
    return _InstrumentedClient(client, service, on_call)


_clients: dict[tuple[str | None, str | None], Any] = {}
_default_client: Any | None = None
_lock = threading.Lock()


def get_dynamodb_client(
    settings: Settings | None = None,
    *,
    session: Any | None = None,
    metrics: Callable[[AwsCallMetric], None] | None = log_call_metric,
) -> Any:
    settings = settings or Settings()
    key = (settings.region_name, settings.endpoint_url)
    with _lock:
        existing = _clients.get(key)
        if existing is not None:
            return existing

        sess = session or boto3.session.Session(region_name=settings.region_name)
        client = cast(Any, sess).client(
            "dynamodb",
            region_name=settings.region_name,
            endpoint_url=settings.endpoint_url,
            config=create_boto3_config(settings),
        )
        if metrics is not None:
            client = instrument_boto3_client(client, service="dynamodb", on_call=metrics)

        _clients[key] = client
        return client


def dynamo_driver(client: Any | None = None) -> Any:
    """Set (when given) and return the client models use when ``define`` gets none."""
    global _default_client
    with _lock:
        if client is not None:
            _default_client = client
        current = _default_client
    if current is None:
        current = get_dynamodb_client()
    return current


def _reset_clients_for_tests() -> None:
    global _default_client
    with _lock:
        _clients.clear()
        _default_client = None
