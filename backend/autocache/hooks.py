from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable

from .errors import ConfigurationError


class HookKind(enum.Enum):
    NONE = "none"
    CALLABLE = "callable"
    METHOD = "method"


@dataclass(frozen=True)
class OnUpdateHook:
    """
    Post-update hook of a cache rule, resolved once when the rule is configured.

    - NONE: nothing runs.
    - CALLABLE: `target(record)`.
    - METHOD: `getattr(record, target)()`, checked against the owning model at
      registration and again on every invocation.
    """

    kind: HookKind = HookKind.NONE
    target: Callable[[Any], Any] | str | None = None

    @classmethod
    def build(cls, value: Any) -> OnUpdateHook:
        if isinstance(value, OnUpdateHook):
            return value
        if value is None:
            return cls()
        if isinstance(value, str):
            if not value.strip():
                raise ConfigurationError("on_update method name must not be empty")
            return cls(kind=HookKind.METHOD, target=value.strip())
        if callable(value):
            return cls(kind=HookKind.CALLABLE, target=value)
        raise ConfigurationError(f"Unsupported on_update hook type: {type(value).__name__}")

    def __bool__(self) -> bool:
        return self.kind is not HookKind.NONE

    def check_model(self, model: type) -> None:
        """Fail fast if a named hook does not exist on `model`."""
        if self.kind is HookKind.METHOD and not callable(getattr(model, self.target, None)):
            raise ConfigurationError(f"on_update method '{self.target}' not found on {model.__name__}")

    def describe(self) -> str | None:
        if self.kind is HookKind.METHOD:
            return self.target
        if self.kind is HookKind.CALLABLE:
            return getattr(self.target, "__qualname__", repr(self.target))
        return None

    def __call__(self, record: Any) -> Any:
        if self.kind is HookKind.NONE:
            return None
        if self.kind is HookKind.CALLABLE:
            return self.target(record)
        method = getattr(record, self.target, None)
        if not callable(method):
            raise ConfigurationError(f"on_update method '{self.target}' not found on {type(record).__name__}")
        return method()
