from __future__ import annotations

from django.db import models


class DedicatedCacheModel(models.Model):
    """
    Abstract base for a table holding cache fields of exactly one parent row.

    Subclasses declare a non-null one-to-one relation to the parent and name it
    in `autocache_dedicated_to`. The parent model gets an attribute named
    `autocache_accessor` that finds or creates the row on first access.

        class CustomerStats(DedicatedCacheModel):
            customer = models.OneToOneField(Customer, on_delete=models.CASCADE, related_name="+")
            order_count = models.PositiveIntegerField(default=0)

            autocache_dedicated_to = "customer"
            autocache_accessor = "stats"
    """

    autocache_dedicated_to: str = ""
    autocache_accessor: str = "dedicated_cache"

    class Meta:
        abstract = True
