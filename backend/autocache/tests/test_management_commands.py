"""Tests for autocache management commands."""

from __future__ import annotations

from decimal import Decimal
from io import StringIO

from django.apps import apps
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from autocache.services import get_registry
from autocache.tests.testapp.models import Customer, Order


class RegisteredRulesMixin:
    """Register the test app's cache rules on the process-wide registry for one test."""

    def setUp(self):
        super().setUp()
        registry = get_registry()
        snapshot = registry.snapshot()
        self.addCleanup(registry.restore, snapshot)
        registry.clear()
        registry.discover([apps.get_app_config("autocache_testapp")])


class ListCacheRulesCommandTests(TestCase):
    def test_empty_registry(self):
        registry = get_registry()
        snapshot = registry.snapshot()
        self.addCleanup(registry.restore, snapshot)
        registry.clear()

        out = StringIO()
        call_command("list_cache_rules", stdout=out)

        self.assertIn("No cache rules registered", out.getvalue())


class ListRegisteredCacheRulesCommandTests(RegisteredRulesMixin, TestCase):
    def test_lists_rules_and_dedicated_models(self):
        out = StringIO()
        call_command("list_cache_rules", stdout=out)

        output = out.getvalue()
        self.assertIn("Registered cache rules (3)", output)
        self.assertIn("autocache_testapp_customer.unfulfilled_order_count", output)
        self.assertIn("autocache_testapp_order[customer_id, status]", output)
        self.assertIn("autocache_testapp_customerstats.lifetime_total", output)
        self.assertIn("autocache_testapp.CustomerStats -> autocache_testapp.Customer.stats", output)


class RecalculateCacheCommandTests(RegisteredRulesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.ada = Customer.objects.create(name="Ada")
        self.grace = Customer.objects.create(name="Grace", unfulfilled_order_count=1)
        Order.objects.create(customer=self.ada)
        Order.objects.create(customer=self.ada)
        Order.objects.create(customer=self.grace)

    def test_recalculates_all_rows(self):
        out = StringIO()
        call_command("recalculate_cache", "autocache_testapp.Customer", stdout=out)

        self.ada.refresh_from_db()
        self.grace.refresh_from_db()
        self.assertEqual(self.ada.unfulfilled_order_count, 2)
        self.assertEqual(self.grace.unfulfilled_order_count, 1)
        self.assertIn("Updated 1/2 records (1 fields)", out.getvalue())

    def test_recalculates_selected_ids(self):
        out = StringIO()
        call_command(
            "recalculate_cache",
            "autocache_testapp.Customer",
            "--field",
            "unfulfilled_order_count",
            "--id",
            str(self.grace.pk),
            stdout=out,
        )

        self.ada.refresh_from_db()
        self.assertEqual(self.ada.unfulfilled_order_count, 0)
        self.assertIn("Updated 0/1 records", out.getvalue())

    def test_dedicated_model_fields(self):
        Order.objects.filter(customer=self.ada).update(amount=Decimal("5.00"))
        stats = self.ada.stats

        call_command("recalculate_cache", "autocache_testapp.CustomerStats", stdout=StringIO())

        stats.refresh_from_db()
        self.assertEqual(stats.order_count, 2)
        self.assertEqual(stats.lifetime_total, Decimal("10.00"))

    def test_unknown_model(self):
        with self.assertRaises(CommandError):
            call_command("recalculate_cache", "autocache_testapp.Nope", stdout=StringIO())

    def test_model_without_cache_fields(self):
        with self.assertRaisesMessage(CommandError, "has no registered cache fields"):
            call_command("recalculate_cache", "autocache_testapp.Order", stdout=StringIO())

    def test_unknown_field(self):
        with self.assertRaisesMessage(CommandError, "Not a cache field"):
            call_command(
                "recalculate_cache",
                "autocache_testapp.Customer",
                "--field",
                "name",
                stdout=StringIO(),
            )
