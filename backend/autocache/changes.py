"""Change events delivered by the change-detection layer, and watch specs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from django.db import models

from .errors import ConfigurationError


class Operation(models.TextChoices):
    CREATE = "create", "Create"
    UPDATE = "update", "Update"
    DESTROY = "destroy", "Destroy"


ALL_OPERATIONS: frozenset[Operation] = frozenset(Operation)


@dataclass(frozen=True)
class FieldChange:
    old_value: Any = None
    new_value: Any = None


def _coerce_field_change(value: Any) -> FieldChange:
    if isinstance(value, FieldChange):
        return value
    if isinstance(value, Mapping):
        return FieldChange(old_value=value.get("old_value"), new_value=value.get("new_value"))
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return FieldChange(old_value=value[0], new_value=value[1])
    raise TypeError(f"Cannot interpret {value!r} as a field change")


@dataclass(frozen=True)
class ChangeEvent:
    """
    One mutation on one upstream record.

    `changed_fields` maps field name -> FieldChange. Plain `(old, new)` pairs and
    `{"old_value": ..., "new_value": ...}` dicts are accepted and normalized.
    The mapping is read-only once constructed.
    """

    table: str
    operation: Operation
    record: Any
    changed_fields: Mapping[str, FieldChange] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "operation", Operation(self.operation))
        normalized = {str(name): _coerce_field_change(value) for name, value in dict(self.changed_fields).items()}
        object.__setattr__(self, "changed_fields", MappingProxyType(normalized))

    def changed(self, field_name: str) -> bool:
        return field_name in self.changed_fields

    def old_value(self, field_name: str, default: Any = None) -> Any:
        change = self.changed_fields.get(field_name)
        return change.old_value if change is not None else default

    def new_value(self, field_name: str, default: Any = None) -> Any:
        change = self.changed_fields.get(field_name)
        return change.new_value if change is not None else default

    def values(self, field_name: str) -> set[Any]:
        """Return the distinct old/new values of a field (e.g. both customer ids on a reassignment)."""
        change = self.changed_fields.get(field_name)
        if change is None:
            return set()
        return {v for v in (change.old_value, change.new_value) if v is not None}


class FieldMap:
    """
    Normalized watch spec: upstream table -> set of watched field names.

    An empty field set means "any field of this table".
    """

    def __init__(self, mapping: Mapping[str, Iterable[str]] | None = None):
        self._fields: dict[str, frozenset[str]] = {}
        for table, fields in (mapping or {}).items():
            if not isinstance(table, str) or not table:
                raise ConfigurationError(f"Watched table names must be non-empty strings, got {table!r}")
            if isinstance(fields, str):
                fields = [fields]
            if fields is None:
                fields = []
            try:
                names = frozenset(str(f) for f in fields)
            except TypeError as exc:
                raise ConfigurationError(f"Watched fields for {table!r} must be a list of names") from exc
            self._fields[table] = self._fields.get(table, frozenset()) | names

    @classmethod
    def build(cls, raw: Any) -> FieldMap:
        if isinstance(raw, FieldMap):
            return raw
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"watching must be a mapping of table -> fields, got {type(raw).__name__}")
        return cls(raw)

    def tables(self) -> list[str]:
        return list(self._fields)

    def fields_for(self, table: str) -> frozenset[str]:
        return self._fields.get(table, frozenset())

    def covers(self, event: ChangeEvent) -> bool:
        """
        Return True if `event` touches something this map watches.

        Creates and destroys of a watched table always match; updates match when
        one of the watched fields changed.
        """
        if event.table not in self._fields:
            return False
        watched = self._fields[event.table]
        if event.operation != Operation.UPDATE or not watched:
            return True
        return any(name in watched for name in event.changed_fields)

    def as_dict(self) -> dict[str, list[str]]:
        return {table: sorted(fields) for table, fields in self._fields.items()}

    def __bool__(self) -> bool:
        return bool(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldMap):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f"FieldMap({self.as_dict()!r})"
