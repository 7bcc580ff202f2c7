from __future__ import annotations

from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework.test import APIClient, APITestCase

from autocache.tests.test_management_commands import RegisteredRulesMixin
from autocache.tests.testapp.models import Customer, Order


class AutoCacheApiTests(RegisteredRulesMixin, APITestCase):
    def setUp(self):
        super().setUp()
        User = get_user_model()
        self.admin = User.objects.create_user(username="admin", password="pass", is_staff=True)
        self.user = User.objects.create_user(username="user", password="pass")
        self.client = APIClient()

    def test_endpoints_require_admin(self):
        for url in (reverse("autocache-rules"), reverse("autocache-recalculate")):
            response = self.client.get(url)
            self.assertEqual(response.status_code, 403)

            self.client.force_authenticate(self.user)
            response = self.client.get(url)
            self.assertEqual(response.status_code, 403)
            self.client.force_authenticate(None)

    def test_rules_lists_registered_rules(self):
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse("autocache-rules"))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        fields = [rule["field"] for rule in body["rules"]]
        self.assertEqual(fields, ["unfulfilled_order_count", "order_count", "lifetime_total"])
        self.assertEqual(
            body["managed_fields"]["autocache_testapp_customerstats"],
            ["order_count", "lifetime_total"],
        )
        self.assertIn(
            {
                "model": "autocache_testapp.CustomerStats",
                "parent": "autocache_testapp.Customer",
                "accessor": "stats",
            },
            body["dedicated_models"],
        )

    def test_recalculate_updates_stale_rows(self):
        stale = Customer.objects.create(name="Ada")
        current = Customer.objects.create(name="Grace", unfulfilled_order_count=1)
        Order.objects.create(customer=stale)
        Order.objects.create(customer=current)
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse("autocache-recalculate"),
            data={"model": "autocache_testapp.Customer"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["model"], "autocache_testapp.Customer")
        self.assertEqual(body["fields"], ["unfulfilled_order_count"])
        self.assertEqual(body["records_seen"], 2)
        self.assertEqual(body["records_written"], 1)
        stale.refresh_from_db()
        self.assertEqual(stale.unfulfilled_order_count, 1)

    def test_recalculate_limited_to_ids(self):
        first = Customer.objects.create(name="Ada")
        second = Customer.objects.create(name="Grace")
        Order.objects.create(customer=first)
        Order.objects.create(customer=second)
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse("autocache-recalculate"),
            data={"model": "autocache_testapp.Customer", "ids": [str(second.pk)]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["records_seen"], 1)
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.unfulfilled_order_count, 0)
        self.assertEqual(second.unfulfilled_order_count, 1)

    def test_recalculate_rejects_invalid_requests(self):
        self.client.force_authenticate(self.admin)
        url = reverse("autocache-recalculate")

        cases = [
            {"model": "autocache_testapp.Nope"},
            {"model": "autocache_testapp.Order"},
            {"model": "autocache_testapp.Customer", "fields": ["name"]},
            {},
        ]
        for payload in cases:
            with self.subTest(payload=payload):
                response = self.client.post(url, data=payload, format="json")
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["error"]["status"], "validation_error")
