from __future__ import annotations

import os
import uuid

import boto3
import pytest
from pydantic import BaseModel

from dynamapper import ConditionFailedError, CreateOptions, define

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.environ.get("DYNAMODB_ENDPOINT"), reason="DYNAMODB_ENDPOINT is not set"),
]


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ["DYNAMODB_ENDPOINT"],
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


class Note(BaseModel):
    pk: str
    sk: int
    value: int
    tags: set[str] | None = None


def test_model_round_trip_against_dynamodb_local() -> None:
    table_name = f"dynamapper_notes_{uuid.uuid4().hex[:12]}"
    client = _client()
    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "N"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        note = define(
            "Note", hash_key="pk", range_key="sk", table_name=table_name, schema=Note, client=client
        )

        note.create({"pk": "A", "sk": 1, "value": 1, "tags": {"x"}}, CreateOptions(overwrite=False))
        with pytest.raises(ConditionFailedError):
            note.create({"pk": "A", "sk": 1, "value": 2}, CreateOptions(overwrite=False))

        got = note.get("A", 1)
        assert got is not None and got.to_dict() == {"pk": "A", "sk": 1, "value": 1, "tags": {"x"}}

        note.batch_write(puts=[{"pk": "A", "sk": i, "value": i} for i in range(2, 40)])
        items = note.query("A").where("sk").gte(10).load_all().collect()
        assert [item["sk"] for item in items] == list(range(10, 40))

        updated = note.update({"pk": "A", "sk": 1, "value": {"$add": 5}})
        assert updated is not None and updated["value"] == 6

        note.destroy("A", 1)
        assert note.get("A", 1) is None
    finally:
        client.delete_table(TableName=table_name)
