from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from dynamapper import Settings
from dynamapper.mocks import FakeDynamoDBClient
from dynamapper.runtime import (
    AwsCallMetric,
    create_boto3_config,
    dynamo_driver,
    get_dynamodb_client,
    instrument_boto3_client,
    log_call_metric,
)


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("DYNAMODB_ENDPOINT", "http://localhost:8000")
    monkeypatch.setenv("DYNAMAPPER_BATCH_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("DYNAMAPPER_BATCH_CONCURRENCY", "2")

    settings = Settings()
    assert settings.region_name == "eu-west-1"
    assert settings.endpoint_url == "http://localhost:8000"
    assert settings.batch_concurrency == 2

    policy = settings.retry_policy()
    assert policy.max_attempts == 4
    assert policy.base_delay == 0.05
    assert policy.max_delay == 1.0


def test_settings_reject_invalid_values() -> None:
    with pytest.raises(PydanticValidationError):
        Settings(batch_concurrency=0)
    with pytest.raises(PydanticValidationError):
        Settings(read_timeout=0)


def test_create_boto3_config() -> None:
    cfg = create_boto3_config(Settings(connect_timeout=2.0, read_timeout=4.0, client_max_attempts=5))
    assert cfg.connect_timeout == 2.0
    assert cfg.read_timeout == 4.0
    assert cfg.retries == {"max_attempts": 5, "mode": "adaptive"}


def test_instrument_boto3_client_records_calls() -> None:
    metrics: list[AwsCallMetric] = []

    client = FakeDynamoDBClient()
    client.expect("put_item", response={})
    wrapped = instrument_boto3_client(client, service="dynamodb", on_call=metrics.append)
    wrapped.put_item(TableName="t", Item={})
    assert len(metrics) == 1
    assert metrics[0].operation == "put_item"
    assert metrics[0].ok is True

    client2 = FakeDynamoDBClient()
    client2.expect("get_item", error=RuntimeError("boom"))
    wrapped2 = instrument_boto3_client(client2, service="dynamodb", on_call=metrics.append)
    with pytest.raises(RuntimeError, match="boom"):
        wrapped2.get_item(TableName="t", Key={})
    assert len(metrics) == 2
    assert metrics[1].ok is False

    assert wrapped2.calls is client2.calls


def test_log_call_metric(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="dynamapper.runtime"):
        log_call_metric(AwsCallMetric(service="dynamodb", operation="query", seconds=0.25, ok=True))
    assert caplog.records[-1].getMessage() == "dynamodb.query ok in 0.250s"


def test_get_dynamodb_client_caches_per_region_and_endpoint() -> None:
    class FakeSession:
        def __init__(self) -> None:
            self.calls: list[dict[str, object]] = []

        def client(self, service_name: str, **kwargs: object) -> object:
            assert service_name == "dynamodb"
            self.calls.append(kwargs)
            return {"created_at": datetime.now(tz=UTC).isoformat()}

    sess = FakeSession()
    east = Settings(region_name="us-east-1", endpoint_url=None)
    c1 = get_dynamodb_client(east, session=sess, metrics=None)
    c2 = get_dynamodb_client(east, session=sess, metrics=None)
    assert c1 is c2
    assert len(sess.calls) == 1
    assert sess.calls[0]["region_name"] == "us-east-1"

    local = Settings(region_name="us-east-1", endpoint_url="http://localhost:8000")
    c3 = get_dynamodb_client(local, session=sess, metrics=None)
    assert c3 is not c1
    assert sess.calls[1]["endpoint_url"] == "http://localhost:8000"


def test_dynamo_driver_sets_default_client() -> None:
    client = FakeDynamoDBClient()
    assert dynamo_driver(client) is client
    assert dynamo_driver() is client

    other = FakeDynamoDBClient()
    assert dynamo_driver(other) is other
