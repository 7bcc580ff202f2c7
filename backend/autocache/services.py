"""Process-wide engine services, built lazily on first use."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .dedicated import DedicatedCacheManager
from .engine import RecalculationEngine
from .registry import RuleRegistry
from .signals import CallbackBus


@dataclass(frozen=True)
class AutoCacheServices:
    bus: CallbackBus
    registry: RuleRegistry
    engine: RecalculationEngine
    dedicated: DedicatedCacheManager


_services: AutoCacheServices | None = None
_services_lock = threading.Lock()


def build_services() -> AutoCacheServices:
    bus = CallbackBus()
    registry = RuleRegistry(bus)
    return AutoCacheServices(
        bus=bus,
        registry=registry,
        engine=RecalculationEngine(registry, bus),
        dedicated=DedicatedCacheManager(bus),
    )


def get_services() -> AutoCacheServices:
    """Get or create the singleton services."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


def reset_services() -> None:
    """Drop the singleton services (tests). Accessors already installed keep their old manager."""
    global _services
    with _services_lock:
        previous, _services = _services, None
    if previous is not None:
        previous.engine.shutdown(wait=False)


def get_bus() -> CallbackBus:
    return get_services().bus


def get_registry() -> RuleRegistry:
    return get_services().registry


def get_engine() -> RecalculationEngine:
    return get_services().engine


def get_dedicated_manager() -> DedicatedCacheManager:
    return get_services().dedicated


def recalculate(candidates, fields):
    """Operator entry point; same semantics as the reactive path."""
    return get_engine().recalculate(candidates, fields)


def handle_change(event) -> None:
    get_engine().handle_change(event)
