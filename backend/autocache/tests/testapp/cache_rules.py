from __future__ import annotations

from django.db.models import Sum

from autocache import cache_rule

from .models import Customer, CustomerStats, Order


def stats_for_order_change(event):
    customers = Customer.affected_by_order_change(event)
    return [customer.stats for customer in customers]


@cache_rule(
    model="autocache_testapp.Customer",
    watching={"autocache_testapp_order": ["status", "customer_id"]},
    resolve_affected="affected_by_order_change",
)
def unfulfilled_order_count(customer: Customer) -> int:
    return customer.orders.filter(status=Order.Status.UNFULFILLED).count()


@cache_rule(
    model=CustomerStats,
    watching={"autocache_testapp_order": ["customer_id"]},
    operations=["create", "update", "destroy"],
    resolve_affected=stats_for_order_change,
)
def order_count(stats: CustomerStats) -> int:
    return Order.objects.filter(customer_id=stats.customer_id).count()


@cache_rule(
    model=CustomerStats,
    watching={"autocache_testapp_order": ["amount", "status", "customer_id"]},
    resolve_affected=stats_for_order_change,
)
def lifetime_total(stats: CustomerStats):
    total = (
        Order.objects.filter(customer_id=stats.customer_id)
        .exclude(status=Order.Status.CANCELLED)
        .aggregate(total=Sum("amount"))["total"]
    )
    return total or 0
