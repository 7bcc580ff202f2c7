"""
Recalculation engine.

Turns (records, fields) into minimal writes: each cached field is recomputed,
compared by value against what is stored, and only real differences are
persisted, with a single save per record. Hooks fire after the save.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from django.db import close_old_connections, models, transaction
from django.db.models.query import QuerySet

from .changes import ChangeEvent
from .conf import AutoCacheSettings, get_autocache_settings
from .registry import RuleRegistry
from .rules import Rule, table_of
from .signals import CallbackBus, CallbackPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedChange:
    record: models.Model
    field: str
    rule: Rule
    old_value: Any
    new_value: Any


@dataclass
class RecalculationSummary:
    records_seen: int = 0
    records_written: int = 0
    fields_written: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "records_seen": self.records_seen,
            "records_written": self.records_written,
            "fields_written": self.fields_written,
        }


def _normalize_fields(fields: Iterable[str] | str | None) -> list[str]:
    if not fields:
        return []
    if isinstance(fields, str):
        fields = [fields]
    ordered: list[str] = []
    for name in fields:
        name = str(name)
        if name not in ordered:
            ordered.append(name)
    return ordered


def _non_empty(candidates: Any) -> Any:
    """
    Return `candidates` in iterable form, or None when there is nothing to do.

    QuerySets pass through unevaluated; iterating an empty one is the no-op.
    """
    if candidates is None:
        return None
    if isinstance(candidates, QuerySet):
        return candidates
    if isinstance(candidates, models.Model):
        return [candidates]
    records = [record for record in candidates if record is not None]
    return records or None


class RecalculationEngine:
    def __init__(
        self,
        registry: RuleRegistry,
        bus: CallbackBus,
        settings_getter: Callable[[], AutoCacheSettings] = get_autocache_settings,
    ):
        self._registry = registry
        self._bus = bus
        self._settings_getter = settings_getter
        self._pool_lock = threading.Lock()
        self._worker_pool: ThreadPoolExecutor | None = None

    @property
    def registry(self) -> RuleRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    def recalculate(self, candidates: Any, fields: Iterable[str] | str) -> RecalculationSummary:
        """
        Recompute `fields` for every record in `candidates` and persist changes.

        `candidates` may be a QuerySet, a single model instance, or any iterable
        of model instances; records are processed in the order given. A record
        whose values are all current is neither saved nor reported.
        """
        summary = RecalculationSummary()
        field_names = _normalize_fields(fields)
        if not field_names or candidates is None:
            return summary

        for record in self._iterate(candidates):
            summary.records_seen += 1
            staged = self._stage(record, field_names)
            if not staged:
                continue
            self._apply(record, staged)
            summary.records_written += 1
            summary.fields_written += len(staged)

        if summary.records_written:
            logger.info(
                "Recalculated %s: %d/%d records updated",
                ", ".join(field_names),
                summary.records_written,
                summary.records_seen,
            )
        return summary

    def _iterate(self, candidates: Any) -> Iterator[models.Model]:
        if isinstance(candidates, QuerySet):
            yield from candidates.iterator(chunk_size=self._settings_getter().iterator_chunk_size)
            return
        if isinstance(candidates, models.Model):
            yield candidates
            return
        for record in candidates:
            if record is not None:
                yield record

    def _stage(self, record: models.Model, field_names: list[str]) -> list[StagedChange]:
        table = table_of(record)
        staged: list[StagedChange] = []
        for field_name in field_names:
            rule = self._registry.rule_for(table, field_name)
            if rule is None:
                logger.debug("No cache rule for %s.%s; skipping", table, field_name)
                continue
            old_value = getattr(record, field_name)
            new_value = rule.calculate(record)
            if new_value == old_value:
                continue
            staged.append(
                StagedChange(
                    record=record,
                    field=field_name,
                    rule=rule,
                    old_value=old_value,
                    new_value=new_value,
                )
            )
        return staged

    def _apply(self, record: models.Model, staged: list[StagedChange]) -> None:
        for change in staged:
            setattr(record, change.field, change.new_value)
        record.save(update_fields=[change.field for change in staged])

        for change in staged:
            self._bus.publish(
                CallbackPoint.RECALCULATION_APPLIED,
                sender=type(record),
                record=record,
                field=change.field,
                rule=change.rule,
                old_value=change.old_value,
                new_value=change.new_value,
            )
            change.rule.on_update(record)

    # ------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------

    def handle_change(self, event: ChangeEvent) -> None:
        """Dispatch an upstream change to every rule watching it."""
        for rule in self._registry.rules_watching(event):
            self.handle_rule_change(rule, event)

    def handle_rule_change(self, rule: Rule, event: ChangeEvent) -> None:
        if rule.resolve_affected is None:
            return
        candidates = _non_empty(rule.affected_records(event))
        if candidates is None:
            logger.debug("%s: no records affected by %s on %s", rule.label, event.operation, event.table)
            return
        if rule.synchronous:
            self.recalculate(candidates, [rule.field])
        else:
            self.recalculate_later(candidates, [rule.field])

    # ------------------------------------------------------------------
    # Deferred recalculation (rules with synchronous=False)
    # ------------------------------------------------------------------

    def recalculate_later(self, candidates: Any, fields: Iterable[str] | str) -> None:
        """
        Recalculate on the worker pool once the current transaction commits.

        Records are re-read by primary key in the worker thread.
        """
        field_names = _normalize_fields(fields)
        if not field_names or candidates is None:
            return

        pks_by_model: dict[type[models.Model], list[Any]] = {}
        if isinstance(candidates, QuerySet):
            pks_by_model[candidates.model] = list(candidates.values_list("pk", flat=True))
        else:
            for record in self._iterate(candidates):
                pks_by_model.setdefault(type(record), []).append(record.pk)

        for model, pks in pks_by_model.items():
            if not pks:
                continue
            transaction.on_commit(
                lambda model=model, pks=pks: self._submit(model, pks, field_names)
            )

    def _submit(self, model: type[models.Model], pks: list[Any], field_names: list[str]) -> None:
        pool = self._ensure_worker_pool()
        try:
            pool.submit(self._run_deferred, model, pks, field_names)
        except RuntimeError as exc:
            # Pool may be shutting down
            logger.warning("Failed to submit deferred recalculation of %s: %s", model.__name__, exc)

    def _ensure_worker_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._worker_pool is None:
                self._worker_pool = ThreadPoolExecutor(
                    max_workers=self._settings_getter().async_workers,
                    thread_name_prefix="autocache-",
                )
            return self._worker_pool

    def _run_deferred(self, model: type[models.Model], pks: list[Any], field_names: list[str]) -> None:
        close_old_connections()
        try:
            self.recalculate(model._default_manager.filter(pk__in=pks).order_by("pk"), field_names)
        except Exception as exc:
            logger.exception(
                "Deferred recalculation of %s (%s) failed: %s",
                model.__name__,
                ", ".join(field_names),
                exc,
            )
        finally:
            close_old_connections()

    def shutdown(self, wait: bool = True) -> None:
        with self._pool_lock:
            pool, self._worker_pool = self._worker_pool, None
        if pool is not None:
            pool.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------

    def cache_fields_for(self, model_or_record: Any) -> dict[str, Rule]:
        """Owned cache fields of a model: field name -> owning rule."""
        fields: dict[str, Rule] = {}
        for rule in self._registry.rules_for(table_of(model_or_record)):
            fields.setdefault(rule.field, rule)
        return fields

    def calculate(self, record: models.Model, field: str) -> Any:
        rule = self._registry.rule_for(table_of(record), field)
        if rule is None:
            raise KeyError(f"No cache rule for {table_of(record)}.{field}")
        return rule.calculate(record)

    def populate(self, record: models.Model, fields: Iterable[str] | str | None = None) -> list[str]:
        """
        Assign freshly computed values to `record` without saving.

        Unknown field names are ignored. Returns the populated field names.
        """
        owned = self.cache_fields_for(record)
        names = list(owned) if fields is None else [f for f in _normalize_fields(fields) if f in owned]
        for name in names:
            setattr(record, name, owned[name].calculate(record))
        return names

    def populate_and_save(self, record: models.Model) -> models.Model:
        self.populate(record)
        record.save()
        return record
