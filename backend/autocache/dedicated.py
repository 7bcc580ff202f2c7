"""
Dedicated cache records: one auxiliary row per parent row, created lazily.

`get_or_create` is safe to call from several threads or processes at once for
the same parent. Creation is optimistic: a unique-constraint conflict means a
concurrent caller won, so the row is read back immediately, also on the last
attempt; any other database error is retried after a linear backoff, up to the
configured attempt count.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from django.apps import apps
from django.core.exceptions import FieldDoesNotExist
from django.db import DatabaseError, models, transaction

from .conf import AutoCacheSettings, get_autocache_settings
from .errors import ConfigurationError, DedicatedCacheError, is_uniqueness_conflict
from .models import DedicatedCacheModel
from .signals import CallbackBus, CallbackPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DedicatedAssociation:
    model: type[models.Model]
    parent_model: type[models.Model]
    relation_name: str
    accessor_name: str

    @property
    def memo_attr(self) -> str:
        return f"_autocache_{self.accessor_name}"

    def condition(self, parent: models.Model) -> dict[str, Any]:
        return {self.relation_name: parent}


def _class_attribute(model: type, name: str) -> Any:
    """Raw attribute `name` as defined on `model` or any base class, without invoking descriptors."""
    for klass in model.__mro__:
        if name in klass.__dict__:
            return klass.__dict__[name]
    return None


class DedicatedCacheAccessor:
    """Descriptor installed on the parent model: `parent.<accessor>` finds or creates the row."""

    def __init__(self, manager: DedicatedCacheManager, association: DedicatedAssociation):
        self.manager = manager
        self.association = association

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return self.manager.get_or_create(instance)


class DedicatedCacheManager:
    def __init__(
        self,
        bus: CallbackBus,
        settings_getter: Callable[[], AutoCacheSettings] = get_autocache_settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._bus = bus
        self._settings_getter = settings_getter
        self._sleep = sleep
        self._associations: dict[type[models.Model], DedicatedAssociation] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, model: type[models.Model]) -> DedicatedAssociation:
        """Register a dedicated cache model and install the accessor on its parent model."""
        existing = self._associations.get(model)
        if existing is not None:
            return existing

        association = self._build_association(model)
        current = _class_attribute(association.parent_model, association.accessor_name)
        if current is not None and not isinstance(current, DedicatedCacheAccessor):
            raise ConfigurationError(
                f"{association.parent_model.__name__}.{association.accessor_name} already exists; "
                f"choose another autocache_accessor for {model.__name__}"
            )
        for other in self._associations.values():
            if other.parent_model is association.parent_model:
                raise ConfigurationError(
                    f"{association.parent_model.__name__} already has dedicated cache model {other.model.__name__}"
                )

        setattr(association.parent_model, association.accessor_name, DedicatedCacheAccessor(self, association))
        self._associations[model] = association
        logger.info(
            "Registered dedicated cache model %s for %s (accessor %r)",
            model.__name__,
            association.parent_model.__name__,
            association.accessor_name,
        )
        self._bus.publish(
            CallbackPoint.DEDICATED_MODEL_REGISTERED,
            sender=model,
            model=model,
            association=association,
        )
        return association

    def _build_association(self, model: type[models.Model]) -> DedicatedAssociation:
        if not (isinstance(model, type) and issubclass(model, DedicatedCacheModel)) or model._meta.abstract:
            raise ConfigurationError(f"{model!r} is not a concrete DedicatedCacheModel")

        relation_name = (model.autocache_dedicated_to or "").strip()
        if not relation_name:
            raise ConfigurationError(f"{model.__name__}.autocache_dedicated_to is required")
        try:
            relation = model._meta.get_field(relation_name)
        except FieldDoesNotExist as exc:
            raise ConfigurationError(f"{model.__name__} has no relation {relation_name!r}") from exc

        if not getattr(relation, "is_relation", False) or not getattr(relation, "concrete", False):
            raise ConfigurationError(f"{model.__name__}.{relation_name} must be a relation to the parent model")
        if not (relation.one_to_one or (relation.many_to_one and relation.unique)):
            raise ConfigurationError(f"{model.__name__}.{relation_name} must be a OneToOneField (or unique ForeignKey)")
        if relation.null:
            raise ConfigurationError(f"{model.__name__}.{relation_name} must not be nullable")

        accessor_name = (model.autocache_accessor or "").strip()
        if not accessor_name.isidentifier():
            raise ConfigurationError(f"{model.__name__}.autocache_accessor must be a valid attribute name")

        return DedicatedAssociation(
            model=model,
            parent_model=relation.related_model,
            relation_name=relation_name,
            accessor_name=accessor_name,
        )

    def discover(self) -> list[DedicatedAssociation]:
        """Register every installed concrete DedicatedCacheModel."""
        for model in apps.get_models():
            if issubclass(model, DedicatedCacheModel):
                self.register(model)
        return list(self._associations.values())

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def associations(self) -> list[DedicatedAssociation]:
        return list(self._associations.values())

    def dedicated_models(self) -> list[type[models.Model]]:
        return list(self._associations)

    def models_with_dedicated_caches(self) -> list[type[models.Model]]:
        return [association.parent_model for association in self._associations.values()]

    def is_dedicated_model(self, model: type[models.Model]) -> bool:
        return model in self._associations

    def has_dedicated_model(self, model: type[models.Model]) -> bool:
        return self.association_for_parent(model) is not None

    def association_for_parent(self, model: type[models.Model]) -> DedicatedAssociation | None:
        for association in self._associations.values():
            if association.parent_model is model:
                return association
        return None

    def dedicated_model_for(self, record_or_model: Any) -> type[models.Model] | None:
        model = record_or_model if isinstance(record_or_model, type) else type(record_or_model)
        association = self.association_for_parent(model)
        return association.model if association else None

    def dedicated_for(self, record: models.Model) -> models.Model | None:
        """The dedicated cache row of a parent record, or None if its model has none."""
        if not self.has_dedicated_model(type(record)):
            return None
        return self.get_or_create(record)

    def dedicated_owner(self, record: models.Model) -> models.Model | None:
        """The parent record of a dedicated cache row, or None for other models."""
        association = self._associations.get(type(record))
        if association is None:
            return None
        return getattr(record, association.relation_name)

    # ------------------------------------------------------------------
    # Find or create
    # ------------------------------------------------------------------

    def get_or_create(self, parent: models.Model) -> models.Model:
        """
        Return the single dedicated cache row for `parent`, creating it if needed.

        The result is memoized on the parent instance.
        """
        association = self.association_for_parent(type(parent))
        if association is None:
            raise DedicatedCacheError(f"{type(parent).__name__} has no dedicated cache model")

        memoized = parent.__dict__.get(association.memo_attr)
        if memoized is not None:
            return memoized

        if parent.pk is None:
            raise DedicatedCacheError(
                f"{type(parent).__name__} must be saved before accessing {association.accessor_name}"
            )

        record, created = self._find_or_create(association, parent)
        if created:
            self._bus.publish(
                CallbackPoint.DEDICATED_RECORD_CREATED,
                sender=association.model,
                record=record,
                parent=parent,
            )
        parent.__dict__[association.memo_attr] = record
        return record

    def forget(self, parent: models.Model) -> None:
        """Drop the memoized dedicated row from a parent instance."""
        association = self.association_for_parent(type(parent))
        if association is not None:
            parent.__dict__.pop(association.memo_attr, None)

    def _find_or_create(self, association: DedicatedAssociation, parent: models.Model) -> tuple[models.Model, bool]:
        config = self._settings_getter()
        max_attempts = config.dedicated_max_attempts
        backoff_seconds = config.dedicated_backoff_seconds
        condition = association.condition(parent)

        attempt = 0
        while True:
            attempt += 1
            try:
                record = self._find(association, condition)
                if record is not None:
                    return record, False
                return self._create(association, condition), True
            except DatabaseError as exc:
                conflict = is_uniqueness_conflict(exc)
                if conflict:
                    # A concurrent caller created the row; read it back right away.
                    logger.debug(
                        "Concurrent creation of %s for %s pk=%s; re-reading",
                        association.accessor_name,
                        association.parent_model.__name__,
                        parent.pk,
                    )
                    record = self._reread(association, condition)
                    if record is not None:
                        return record, False
                if attempt >= max_attempts:
                    logger.error(
                        "Failed to find or create %s for %s pk=%s after %d attempts: %s",
                        association.accessor_name,
                        association.parent_model.__name__,
                        parent.pk,
                        attempt,
                        exc,
                    )
                    raise
                if conflict:
                    continue
                logger.warning(
                    "Attempt %d/%d to find or create %s for %s pk=%s failed: %s",
                    attempt,
                    max_attempts,
                    association.accessor_name,
                    association.parent_model.__name__,
                    parent.pk,
                    exc,
                )
                self._sleep(backoff_seconds * attempt)

    def _find(self, association: DedicatedAssociation, condition: dict[str, Any]) -> models.Model | None:
        return association.model._default_manager.filter(**condition).first()

    def _reread(self, association: DedicatedAssociation, condition: dict[str, Any]) -> models.Model | None:
        try:
            return self._find(association, condition)
        except DatabaseError as exc:
            logger.debug("Re-read of %s after a conflict failed: %s", association.accessor_name, exc)
            return None

    def _create(self, association: DedicatedAssociation, condition: dict[str, Any]) -> models.Model:
        # Savepoint so a unique-constraint failure leaves any outer transaction usable.
        with transaction.atomic():
            return association.model._default_manager.create(**condition)
