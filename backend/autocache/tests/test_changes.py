"""Tests for change events and watch specs."""

from django.test import SimpleTestCase

from autocache.changes import ChangeEvent, FieldChange, FieldMap, Operation
from autocache.errors import ConfigurationError


class ChangeEventTests(SimpleTestCase):
    def test_normalizes_operation_and_field_changes(self):
        event = ChangeEvent(
            table="orders",
            operation="update",
            record=None,
            changed_fields={
                "status": ("unfulfilled", "shipped"),
                "amount": {"old_value": 1, "new_value": 2},
                "customer_id": FieldChange(old_value=3, new_value=4),
            },
        )
        self.assertIs(event.operation, Operation.UPDATE)
        self.assertEqual(event.changed_fields["status"], FieldChange("unfulfilled", "shipped"))
        self.assertEqual(event.old_value("amount"), 1)
        self.assertEqual(event.new_value("customer_id"), 4)
        self.assertEqual(event.values("customer_id"), {3, 4})
        self.assertTrue(event.changed("status"))
        self.assertFalse(event.changed("name"))
        self.assertIsNone(event.old_value("name"))

    def test_changed_fields_are_read_only(self):
        event = ChangeEvent(table="orders", operation=Operation.CREATE, record=None, changed_fields={})
        with self.assertRaises(TypeError):
            event.changed_fields["status"] = FieldChange()  # type: ignore[index]

    def test_invalid_operation_rejected(self):
        with self.assertRaises(ValueError):
            ChangeEvent(table="orders", operation="upsert", record=None)


class FieldMapTests(SimpleTestCase):
    def _event(self, operation, **changes):
        return ChangeEvent(table="orders", operation=operation, record=None, changed_fields=changes)

    def test_update_matches_only_watched_fields(self):
        watching = FieldMap({"orders": ["status", "customer_id"]})
        self.assertTrue(watching.covers(self._event("update", status=("a", "b"))))
        self.assertFalse(watching.covers(self._event("update", amount=(1, 2))))

    def test_create_and_destroy_always_match_watched_table(self):
        watching = FieldMap({"orders": ["status"]})
        self.assertTrue(watching.covers(self._event("create")))
        self.assertTrue(watching.covers(self._event("destroy")))

    def test_unwatched_table_never_matches(self):
        watching = FieldMap({"customers": ["name"]})
        self.assertFalse(watching.covers(self._event("create")))

    def test_empty_field_list_watches_every_field(self):
        watching = FieldMap({"orders": []})
        self.assertTrue(watching.covers(self._event("update", anything=(1, 2))))

    def test_build_accepts_single_field_string(self):
        watching = FieldMap.build({"orders": "status"})
        self.assertEqual(watching.as_dict(), {"orders": ["status"]})
        self.assertIs(FieldMap.build(watching), watching)
        self.assertFalse(FieldMap.build(None))

    def test_build_rejects_non_mapping(self):
        with self.assertRaises(ConfigurationError):
            FieldMap.build(["orders"])
