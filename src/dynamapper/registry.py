from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel

from .config import Settings
from .errors import ModelDefinitionError, ModelNotFoundError
from .model import IndexDefinition, Model, ModelDefinition, TableName
from .retry import RetryPolicy


class ModelRegistry(Mapping[str, Model]):
    """Process-wide models keyed by name; ``define`` is the only way in."""

    def __init__(self) -> None:
        self._models: dict[str, Model] = {}
        self._lock = threading.Lock()

    def define(
        self,
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
        client: Any | None = None,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> Model:
        definition = ModelDefinition.create(
            name,
            hash_key=hash_key,
            range_key=range_key,
            table_name=table_name,
            schema=schema,
            indexes=indexes,
            timestamps=timestamps,
            created_at=created_at,
            updated_at=updated_at,
            strict=strict,
        )
        model = Model(definition, client=client, settings=settings, retry_policy=retry_policy, logger=logger)
        with self._lock:
            if name in self._models:
                raise ModelDefinitionError(f"model is already defined: {name}")
            self._models[name] = model
        logging.getLogger(__name__).debug("defined model %s", name)
        return model

    def get(self, name: str) -> Model:  # type: ignore[override]
        with self._lock:
            model = self._models.get(name)
        if model is None:
            raise ModelNotFoundError(name)
        return model

    def __getitem__(self, name: str) -> Model:
        return self.get(name)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._models))

    def __len__(self) -> int:
        with self._lock:
            return len(self._models)

    def reset(self) -> None:
        with self._lock:
            self._models.clear()


models = ModelRegistry()


def define(name: str, **kwargs: Any) -> Model:
    """Define and register a model in the default registry; see :meth:`ModelRegistry.define`."""
    return models.define(name, **kwargs)


def get_model(name: str) -> Model:
    return models.get(name)


def reset() -> None:
    models.reset()
