"""Reactive derived-field cache for Django models.

Cache rules declare how a field is computed and which records a change
affects; the engine recomputes only those fields and writes only real changes.

Usage (in `<app>/cache_rules.py`, swept at startup):
    from autocache import cache_rule

    @cache_rule(
        model="shop.Customer",
        watching={"shop_order": ["status", "customer_id"]},
        resolve_affected=customers_of_order,
    )
    def unfulfilled_order_count(customer) -> int:
        return customer.orders.filter(status="unfulfilled").count()

Models are not imported here; use `autocache.services` for the engine,
registry, callback bus and dedicated cache manager.
"""

from .changes import ChangeEvent, FieldChange, FieldMap, Operation
from .errors import ConfigurationError, DedicatedCacheError
from .rules import Rule, cache_rule
from .signals import CallbackPoint

__all__ = [
    "CallbackPoint",
    "ChangeEvent",
    "ConfigurationError",
    "DedicatedCacheError",
    "FieldChange",
    "FieldMap",
    "Operation",
    "Rule",
    "cache_rule",
]
