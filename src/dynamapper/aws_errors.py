from __future__ import annotations

from botocore.exceptions import ClientError

from .errors import (
    AwsError,
    ConditionFailedError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
    }
)


def error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def is_transient(err: BaseException) -> bool:
    if isinstance(err, TransientStoreError):
        return True
    if isinstance(err, ClientError):
        return error_code(err) in TRANSIENT_ERROR_CODES
    return False


def map_client_error(err: ClientError) -> Exception:
    code = error_code(err)
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(message or "conditional check failed")
    if code == "ValidationException":
        return ValidationError(message)
    if code == "ResourceNotFoundException":
        return NotFoundError(message)
    if code in TRANSIENT_ERROR_CODES:
        return TransientStoreError(code=code, message=message or str(err))

    return AwsError(code=code or "UnknownError", message=message or str(err))
