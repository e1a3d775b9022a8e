from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Literal, get_args

from .errors import ValidationError

if TYPE_CHECKING:
    from .item import Item

type LifecycleAction = Literal["create", "update", "destroy"]
type BeforeHook = Callable[[dict[str, Any]], Mapping[str, Any] | None]
type AfterHook = Callable[["Item | None"], None]

ACTIONS: tuple[str, ...] = get_args(LifecycleAction.__value__)


def _check_action(action: str) -> None:
    if action not in ACTIONS:
        raise ValidationError(f"unknown lifecycle action: {action}")


class LifecycleHooks:
    """Before/after listeners for create, update and destroy.

    Before hooks run in registration order and receive the candidate data. A hook
    may mutate it in place, return a replacement mapping, or raise to abort; the raised
    exception reaches the caller unchanged and no request is sent.

    After hooks receive the persisted item once the request succeeded. An update sent
    with ``return_values="NONE"`` has no item to report, so its hooks receive ``None``.
    After-hook exceptions are logged and never turn the completed write into a failure.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._before: dict[str, list[BeforeHook]] = {a: [] for a in ACTIONS}
        self._after: dict[str, list[AfterHook]] = {a: [] for a in ACTIONS}
        self._lock = threading.Lock()

    def before(self, action: LifecycleAction, hook: BeforeHook) -> None:
        _check_action(action)
        with self._lock:
            self._before[action].append(hook)

    def after(self, action: LifecycleAction, hook: AfterHook) -> None:
        _check_action(action)
        with self._lock:
            self._after[action].append(hook)

    def run_before(self, action: LifecycleAction, data: Mapping[str, Any]) -> dict[str, Any]:
        with self._lock:
            hooks = list(self._before[action])

        candidate = dict(data)
        for hook in hooks:
            result = hook(candidate)
            if result is None:
                continue
            if not isinstance(result, Mapping):
                raise ValidationError(f"before {action} hook must return a mapping or None")
            candidate = dict(result)
        return candidate

    def run_after(self, action: LifecycleAction, item: Item | None) -> None:
        with self._lock:
            hooks = list(self._after[action])

        for hook in hooks:
            try:
                hook(item)
            except Exception:
                self._logger.exception(
                    "after %s hook %s failed", action, getattr(hook, "__qualname__", repr(hook))
                )
