from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

from .retry import RetryPolicy


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class Settings(BaseModel):
    """Connection and retry settings, defaulting from the environment."""

    model_config = ConfigDict(frozen=True)

    region_name: str = Field(
        default_factory=lambda: os.getenv("AWS_REGION", "us-east-1"),
        description="AWS region name",
    )
    endpoint_url: str | None = Field(
        default_factory=lambda: os.getenv("DYNAMODB_ENDPOINT"),
        description="DynamoDB endpoint URL (for DynamoDB Local)",
    )
    max_pool_connections: int = Field(
        default_factory=lambda: _env_int("DYNAMAPPER_MAX_POOL_CONNECTIONS", 50),
        gt=0,
        description="Maximum number of connections in the botocore pool",
    )
    connect_timeout: float = Field(
        default_factory=lambda: _env_float("DYNAMAPPER_CONNECT_TIMEOUT", 1.0),
        gt=0,
        description="Connect timeout in seconds",
    )
    read_timeout: float = Field(
        default_factory=lambda: _env_float("DYNAMAPPER_READ_TIMEOUT", 3.0),
        gt=0,
        description="Read timeout in seconds",
    )
    client_max_attempts: int = Field(
        default_factory=lambda: _env_int("DYNAMAPPER_CLIENT_MAX_ATTEMPTS", 3),
        ge=1,
        description="botocore retry attempts per request",
    )
    batch_max_attempts: int = Field(
        default_factory=lambda: _env_int("DYNAMAPPER_BATCH_MAX_ATTEMPTS", 8),
        ge=1,
        description="Requests per batch chunk before unprocessed work is reported",
    )
    batch_base_delay: float = Field(
        default_factory=lambda: _env_float("DYNAMAPPER_BATCH_BASE_DELAY", 0.05),
        ge=0,
        description="First backoff delay in seconds",
    )
    batch_max_delay: float = Field(
        default_factory=lambda: _env_float("DYNAMAPPER_BATCH_MAX_DELAY", 1.0),
        ge=0,
        description="Backoff delay cap in seconds",
    )
    batch_concurrency: int = Field(
        default_factory=lambda: _env_int("DYNAMAPPER_BATCH_CONCURRENCY", 4),
        ge=1,
        description="Batch chunks issued concurrently",
    )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.batch_max_attempts,
            base_delay=self.batch_base_delay,
            max_delay=self.batch_max_delay,
        )
