from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .conditions import Condition
from .config import Settings
from .errors import (
    AwsError,
    ConditionFailedError,
    DynamapperError,
    ModelDefinitionError,
    ModelNotFoundError,
    NotFoundError,
    OperationCancelledError,
    PartialFailureError,
    TransientStoreError,
    ValidationError,
)
from .item import Item
from .model import IndexDefinition, Model, ModelDefinition, Projection, gsi, lsi
from .options import (
    BatchGetOptions,
    BatchWriteOptions,
    CreateOptions,
    DestroyOptions,
    GetOptions,
    UpdateOptions,
)
from .query import Query
from .registry import ModelRegistry, define, get_model, models, reset
from .retry import RetryPolicy
from .scan import Scan
from .stream import QueryResponse, ResultStream

if TYPE_CHECKING:
    from .batch import UnprocessedWrite
    from .cursor import Cursor, decode_cursor, encode_cursor
    from .runtime import (
        AwsCallMetric,
        create_boto3_config,
        dynamo_driver,
        get_dynamodb_client,
        instrument_boto3_client,
    )


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {
        "AwsCallMetric",
        "create_boto3_config",
        "dynamo_driver",
        "get_dynamodb_client",
        "instrument_boto3_client",
    }:
        from . import runtime

        return getattr(runtime, name)
    if name in {"Cursor", "decode_cursor", "encode_cursor"}:
        from . import cursor

        return getattr(cursor, name)
    if name == "UnprocessedWrite":
        from .batch import UnprocessedWrite

        return UnprocessedWrite
    raise AttributeError(name)


__all__ = [
    "AwsCallMetric",
    "AwsError",
    "BatchGetOptions",
    "BatchWriteOptions",
    "Condition",
    "ConditionFailedError",
    "CreateOptions",
    "Cursor",
    "DestroyOptions",
    "DynamapperError",
    "GetOptions",
    "IndexDefinition",
    "Item",
    "Model",
    "ModelDefinition",
    "ModelDefinitionError",
    "ModelNotFoundError",
    "ModelRegistry",
    "NotFoundError",
    "OperationCancelledError",
    "PartialFailureError",
    "Projection",
    "Query",
    "QueryResponse",
    "ResultStream",
    "RetryPolicy",
    "Scan",
    "Settings",
    "TransientStoreError",
    "UnprocessedWrite",
    "UpdateOptions",
    "ValidationError",
    "__repo_version__",
    "__version__",
    "create_boto3_config",
    "decode_cursor",
    "define",
    "dynamo_driver",
    "encode_cursor",
    "get_dynamodb_client",
    "get_model",
    "gsi",
    "instrument_boto3_client",
    "lsi",
    "models",
    "reset",
]
