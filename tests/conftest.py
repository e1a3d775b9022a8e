from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import boto3
import pytest
from moto import mock_aws

from dynamapper import registry
from dynamapper.runtime import _reset_clients_for_tests


@pytest.fixture(autouse=True)
def _isolated_registry() -> Iterator[None]:
    registry.reset()
    _reset_clients_for_tests()
    yield
    registry.reset()
    _reset_clients_for_tests()


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.delenv("DYNAMODB_ENDPOINT", raising=False)


@pytest.fixture
def dynamodb(aws_credentials: None) -> Iterator[Any]:
    with mock_aws():
        yield boto3.client("dynamodb", region_name="us-east-1")


@pytest.fixture
def make_table(dynamodb: Any) -> Callable[..., str]:
    def create(
        name: str,
        *,
        hash_key: str,
        range_key: str | None = None,
        attribute_types: dict[str, str] | None = None,
    ) -> str:
        types = attribute_types or {}
        key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
        attrs = [{"AttributeName": hash_key, "AttributeType": types.get(hash_key, "S")}]
        if range_key is not None:
            key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
            attrs.append({"AttributeName": range_key, "AttributeType": types.get(range_key, "S")})
        dynamodb.create_table(
            TableName=name,
            KeySchema=key_schema,
            AttributeDefinitions=attrs,
            BillingMode="PAY_PER_REQUEST",
        )
        return name

    return create
