from __future__ import annotations

from django.apps import AppConfig


class AutoCacheConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "autocache"
    verbose_name = "Derived Field Cache"

    def ready(self) -> None:
        """Register dedicated cache models and, if enabled, cache rules from `cache_rules` modules."""
        from .conf import get_autocache_settings
        from .services import get_dedicated_manager, get_registry

        get_dedicated_manager().discover()
        if get_autocache_settings().autodiscover:
            get_registry().discover()
