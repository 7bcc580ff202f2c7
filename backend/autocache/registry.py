"""Cache rule registration and lookup."""

from __future__ import annotations

import importlib
import logging
from typing import Any, Callable, Iterable

from django.apps import AppConfig, apps
from django.db import models
from django.utils.module_loading import module_has_submodule

from .changes import ChangeEvent
from .errors import ConfigurationError
from .rules import Rule, table_of
from .signals import CallbackBus, CallbackPoint

logger = logging.getLogger(__name__)

RULES_MODULE_NAME = "cache_rules"

RuleFactory = Callable[[], Rule]


class RuleRegistry:
    """
    Ordered, identity-deduplicated collection of cache rules.

    Lookups by table/field are computed from the rule list on demand; there is
    no separately maintained index. Registration is expected to happen at
    startup and is not guarded against concurrent callers.
    """

    def __init__(self, bus: CallbackBus):
        self._bus = bus
        self._rules: list[Rule] = []

    @property
    def rules(self) -> list[Rule]:
        return list(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule: object) -> bool:
        return any(existing is rule for existing in self._rules)

    def register(self, rule_or_factory: Rule | RuleFactory) -> list[Rule]:
        """
        Register a Rule (or a zero-argument factory returning one).

        Re-registering an already registered rule does not add it again or
        fire the callback; it is only bound again if it is not bound.
        Returns the current rule list.
        """
        rule = self._build(rule_or_factory)
        if rule in self:
            if not rule.is_bound:
                rule.bind()
            return self.rules

        rule.bind()
        owners = self.rules_for(rule.owner_table, rule.field)
        if owners:
            logger.warning(
                "Cache field %s.%s already owned by %s; %s will be ignored during recalculation",
                rule.owner_table,
                rule.field,
                owners[0].label,
                rule.label,
            )

        self._rules.append(rule)
        logger.info("Registered cache rule %s (%s.%s)", rule.label, rule.owner_table, rule.field)
        self._bus.publish(CallbackPoint.RULE_REGISTERED, sender=Rule, rule=rule)
        return self.rules

    def _build(self, rule_or_factory: Any) -> Rule:
        if isinstance(rule_or_factory, Rule):
            return rule_or_factory
        if callable(rule_or_factory):
            rule = rule_or_factory()
            if isinstance(rule, Rule):
                return rule
            raise ConfigurationError(
                f"Rule factory {rule_or_factory!r} returned {type(rule).__name__}, expected Rule"
            )
        raise ConfigurationError(f"Cannot register {rule_or_factory!r} as a cache rule")

    def rules_for(self, table_or_model: Any, field: str | None = None) -> list[Rule]:
        """Rules owned by a table (or model class), optionally narrowed to one field."""
        table = table_of(table_or_model)
        if not table:
            return []
        matches = [rule for rule in self._rules if rule.owner_table == table]
        if field is None:
            return matches
        return [rule for rule in matches if rule.field == str(field)]

    def rules_for_model(self, model: type[models.Model]) -> list[Rule]:
        return self.rules_for(table_of(model))

    def rule_for(self, table_or_model: Any, field: str) -> Rule | None:
        """The owning rule for a cached field: the first one registered."""
        matches = self.rules_for(table_or_model, field)
        return matches[0] if matches else None

    def rules_watching(self, event: ChangeEvent) -> list[Rule]:
        return [rule for rule in self._rules if rule.watches(event)]

    def all_managed_cache_fields(self) -> dict[str, list[str]]:
        fields: dict[str, list[str]] = {}
        for rule in self._rules:
            table_fields = fields.setdefault(rule.owner_table, [])
            if rule.field not in table_fields:
                table_fields.append(rule.field)
        return fields

    def models_with_cache_fields(self) -> list[type[models.Model]]:
        seen: list[type[models.Model]] = []
        for rule in self._rules:
            if isinstance(rule.model, type) and rule.model not in seen:
                seen.append(rule.model)
        return seen

    def discover(self, app_configs: Iterable[AppConfig] | None = None) -> list[Rule]:
        """
        Import `cache_rules` modules of installed apps and register every
        module-level Rule they define, in definition order.
        """
        for app_config in app_configs if app_configs is not None else apps.get_app_configs():
            if not module_has_submodule(app_config.module, RULES_MODULE_NAME):
                continue
            module = importlib.import_module(f"{app_config.name}.{RULES_MODULE_NAME}")
            for value in list(vars(module).values()):
                if isinstance(value, Rule):
                    self.register(value)
        return self.rules

    def snapshot(self) -> list[Rule]:
        return self.rules

    def restore(self, snapshot: Iterable[Rule]) -> None:
        self._rules = list(snapshot)

    def clear(self) -> None:
        self._rules.clear()
