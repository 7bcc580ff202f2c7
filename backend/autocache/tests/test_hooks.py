"""Tests for on_update hook resolution."""

from unittest.mock import Mock

from django.test import SimpleTestCase

from autocache.errors import ConfigurationError
from autocache.hooks import HookKind, OnUpdateHook


class _Record:
    def __init__(self):
        self.refreshed = 0

    def refresh_badges(self):
        self.refreshed += 1


class OnUpdateHookTests(SimpleTestCase):
    def test_none_is_a_no_op(self):
        hook = OnUpdateHook.build(None)
        self.assertIs(hook.kind, HookKind.NONE)
        self.assertFalse(hook)
        self.assertIsNone(hook(_Record()))

    def test_callable_receives_record(self):
        callback = Mock()
        record = _Record()
        hook = OnUpdateHook.build(callback)
        self.assertIs(hook.kind, HookKind.CALLABLE)
        hook(record)
        callback.assert_called_once_with(record)

    def test_named_method_invoked_on_record(self):
        record = _Record()
        hook = OnUpdateHook.build("refresh_badges")
        self.assertIs(hook.kind, HookKind.METHOD)
        hook(record)
        self.assertEqual(record.refreshed, 1)

    def test_missing_named_method_raises_at_invocation(self):
        hook = OnUpdateHook.build("does_not_exist")
        with self.assertRaises(ConfigurationError):
            hook(_Record())

    def test_check_model_validates_named_method(self):
        OnUpdateHook.build("refresh_badges").check_model(_Record)
        with self.assertRaises(ConfigurationError):
            OnUpdateHook.build("nope").check_model(_Record)

    def test_unsupported_types_rejected(self):
        with self.assertRaises(ConfigurationError):
            OnUpdateHook.build(42)
        with self.assertRaises(ConfigurationError):
            OnUpdateHook.build("   ")
