"""Cache rule declarations."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable

from django.apps import apps
from django.core.exceptions import AppRegistryNotReady, FieldDoesNotExist
from django.db import models

from .changes import ALL_OPERATIONS, ChangeEvent, FieldMap, Operation
from .errors import ConfigurationError
from .hooks import OnUpdateHook

Compute = Callable[[Any], Any]
Resolver = Callable[[ChangeEvent], Any]


def table_of(record_or_model: Any) -> str:
    """Return the storage table of a model instance, model class or table name."""
    if isinstance(record_or_model, str):
        return record_or_model
    meta = getattr(record_or_model, "_meta", None)
    if meta is None or not hasattr(meta, "db_table"):
        raise TypeError(f"Invalid table_or_model: {record_or_model!r}")
    return meta.db_table


def _normalize_operations(value: Any) -> frozenset[Operation]:
    if value is None:
        return ALL_OPERATIONS
    if isinstance(value, str):
        value = [value]
    try:
        operations = frozenset(Operation(op) for op in value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid operations: {value!r}") from exc
    if not operations:
        raise ConfigurationError("operations must not be empty (omit it to watch all operations)")
    return operations


@dataclass(eq=False)
class Rule:
    """
    Declarative cache rule: one derived field on one table.

    Rules compare by identity; two rules with the same table and field are
    distinct registrations (the first one registered owns the field).
    """

    field: str
    compute: Compute
    resolve_affected: Resolver | str | None = None
    model: type[models.Model] | str | None = None
    table: str | None = None
    watching: FieldMap | dict[str, Iterable[str]] | None = None
    synchronous: bool = True
    operations: Iterable[Operation | str] | None = None
    on_update: OnUpdateHook | Callable[[Any], Any] | str | None = None
    context: Any = None
    name: str | None = None
    _bound: bool = dataclasses.field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.field, str) or not self.field:
            raise ConfigurationError(f"Cache rule field must be a non-empty string, got {self.field!r}")
        if not callable(self.compute):
            raise ConfigurationError(f"compute for {self.field!r} must be callable")
        if self.resolve_affected is not None and not (
            callable(self.resolve_affected) or isinstance(self.resolve_affected, str)
        ):
            raise ConfigurationError(f"resolve_affected for {self.field!r} must be callable or a model method name")
        if self.model is not None and not isinstance(self.model, str) and not (
            isinstance(self.model, type) and issubclass(self.model, models.Model)
        ):
            raise ConfigurationError(f"model for {self.field!r} must be a model class or 'app_label.ModelName'")
        self.watching = FieldMap.build(self.watching)
        self.operations = _normalize_operations(self.operations)
        self.on_update = OnUpdateHook.build(self.on_update)
        self.synchronous = bool(self.synchronous)

    @property
    def owner_table(self) -> str | None:
        if self.table:
            return self.table
        if isinstance(self.model, type):
            return table_of(self.model)
        return None

    @property
    def is_bound(self) -> bool:
        return self._bound

    @property
    def label(self) -> str:
        return self.name or f"{self.owner_table or '?'}.{self.field}"

    def configure(self, **options: Any) -> Rule:
        """
        Reconfigure the rule in place.

        The new options are validated before any of them are applied; a rule
        that is already bound is bound again, so a bad reconfiguration raises
        ConfigurationError and leaves the rule unchanged.
        """
        known = {f.name for f in dataclasses.fields(self) if f.init}
        unknown = set(options) - known
        if unknown:
            raise ConfigurationError(f"Unknown cache rule options: {', '.join(sorted(unknown))}")
        candidate = dataclasses.replace(self, **options)
        if self._bound:
            candidate.bind()
        for f in dataclasses.fields(self):
            setattr(self, f.name, getattr(candidate, f.name))
        return self

    def bind(self) -> Rule:
        """
        Resolve the owning model and table, validating everything that can be
        checked before the first recalculation.
        """
        if isinstance(self.model, str):
            try:
                self.model = apps.get_model(self.model)
            except (LookupError, ValueError, AppRegistryNotReady) as exc:
                raise ConfigurationError(f"Unknown model {self.model!r} for cache field {self.field!r}") from exc

        if not self.owner_table:
            raise ConfigurationError(f"Must provide table or model for cache field {self.field!r}")

        if self.model is not None:
            try:
                self.model._meta.get_field(self.field)
            except FieldDoesNotExist as exc:
                raise ConfigurationError(
                    f"{self.model.__name__} has no field {self.field!r} to cache"
                ) from exc
            self.on_update.check_model(self.model)
            if isinstance(self.resolve_affected, str) and not callable(getattr(self.model, self.resolve_affected, None)):
                raise ConfigurationError(
                    f"resolve_affected method '{self.resolve_affected}' not found on {self.model.__name__}"
                )
        elif isinstance(self.resolve_affected, str):
            raise ConfigurationError(
                f"resolve_affected given by name for {self.field!r} requires a model"
            )

        self._bound = True
        return self

    def calculate(self, record: Any) -> Any:
        return self.compute(record)

    def watches(self, event: ChangeEvent) -> bool:
        if self.resolve_affected is None:
            return False
        return event.operation in self.operations and self.watching.covers(event)

    def affected_records(self, event: ChangeEvent) -> Any:
        """Map an upstream change to the records whose cached field may be stale."""
        resolver = self.resolve_affected
        if resolver is None:
            return None
        if isinstance(resolver, str):
            if self.model is None or isinstance(self.model, str):
                raise ConfigurationError(f"Cache rule {self.label} must be registered before resolving by name")
            method = getattr(self.model, resolver, None)
            if not callable(method):
                raise ConfigurationError(f"resolve_affected method '{resolver}' not found on {self.model.__name__}")
            return method(event)
        return resolver(event)

    def handle_change(self, event: ChangeEvent, engine=None) -> None:
        """Watcher entry point: recalculate this rule's field for the records affected by `event`."""
        if engine is None:
            from .services import get_engine

            engine = get_engine()
        engine.handle_rule_change(self, event)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.label,
            "table": self.owner_table,
            "field": self.field,
            "model": self.model._meta.label if isinstance(self.model, type) else self.model,
            "watching": self.watching.as_dict(),
            "operations": sorted(str(op) for op in self.operations),
            "synchronous": self.synchronous,
            "on_update": self.on_update.describe(),
            "has_resolver": self.resolve_affected is not None,
        }


def cache_rule(
    *,
    field: str | None = None,
    model: type[models.Model] | str | None = None,
    table: str | None = None,
    watching: dict[str, Iterable[str]] | None = None,
    resolve_affected: Resolver | str | None = None,
    synchronous: bool = True,
    operations: Iterable[Operation | str] | None = None,
    on_update: Callable[[Any], Any] | str | None = None,
    context: Any = None,
) -> Callable[[Compute], Rule]:
    """Decorator turning a compute function into a Rule.

    Usage:
        @cache_rule(
            model="shop.Customer",
            watching={"shop_order": ["status", "customer_id"]},
            resolve_affected=customers_of_order,
        )
        def unfulfilled_order_count(customer) -> int:
            ...

    The field name defaults to the function name. The returned Rule is not
    registered; `cache_rules` modules are swept at startup, or pass it to
    `RuleRegistry.register` explicitly.
    """

    def decorator(func: Compute) -> Rule:
        return Rule(
            field=field or func.__name__,
            compute=func,
            resolve_affected=resolve_affected,
            model=model,
            table=table,
            watching=watching,
            synchronous=synchronous,
            operations=operations,
            on_update=on_update,
            context=context,
            name=f"{func.__module__}.{func.__qualname__}",
        )

    return decorator
