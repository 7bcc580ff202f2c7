"""Callback bus: named extension points fired at cache lifecycle moments."""

from __future__ import annotations

import threading
from typing import Any, Callable

from django.db import models
from django.dispatch import Signal

from .errors import ConfigurationError


class CallbackPoint(models.TextChoices):
    # Args: rule (Rule)
    RULE_REGISTERED = "rule_registered", "Rule registered"
    # Args: model (dedicated model class), association (DedicatedAssociation)
    DEDICATED_MODEL_REGISTERED = "dedicated_model_registered", "Dedicated model registered"
    # Args: record, field (str), rule (Rule), old_value, new_value
    RECALCULATION_APPLIED = "recalculation_applied", "Recalculation applied"
    # Args: record (dedicated record), parent (parent record)
    DEDICATED_RECORD_CREATED = "dedicated_record_created", "Dedicated record created"


Handler = Callable[..., Any]


class CallbackBus:
    """
    One `django.dispatch.Signal` per callback point.

    Handlers are strongly referenced and run synchronously in subscription
    order. `publish` uses `Signal.send`, so a failing handler propagates to the
    publisher and the remaining handlers for that publish are skipped.
    Subscriptions are expected at startup; `reset` exists for tests.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._signals: dict[CallbackPoint, Signal] = {point: Signal() for point in CallbackPoint}

    def _point(self, point: CallbackPoint | str) -> CallbackPoint:
        try:
            return CallbackPoint(point)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown callback point: {point!r}") from exc

    def signal(self, point: CallbackPoint | str) -> Signal:
        return self._signals[self._point(point)]

    def subscribe(self, point: CallbackPoint | str, handler: Handler, *, dispatch_uid: str | None = None) -> None:
        if not callable(handler):
            raise ConfigurationError(f"Handler for {point!r} must be callable")
        self.signal(point).connect(handler, weak=False, dispatch_uid=dispatch_uid)

    def on(self, point: CallbackPoint | str) -> Callable[[Handler], Handler]:
        """Decorator form of `subscribe`."""

        def decorator(handler: Handler) -> Handler:
            self.subscribe(point, handler)
            return handler

        return decorator

    def unsubscribe(self, point: CallbackPoint | str, handler: Handler, *, dispatch_uid: str | None = None) -> bool:
        return self.signal(point).disconnect(handler, dispatch_uid=dispatch_uid)

    def publish(self, point: CallbackPoint | str, *, sender: Any = None, **payload: Any) -> list[tuple[Handler, Any]]:
        signal = self.signal(point)
        return signal.send(sender=sender if sender is not None else self, **payload)

    def has_handlers(self, point: CallbackPoint | str) -> bool:
        return bool(self.signal(point).receivers)

    def reset(self, point: CallbackPoint | str | None = None) -> None:
        with self._lock:
            points = list(CallbackPoint) if point is None else [self._point(point)]
            for p in points:
                self._signals[p] = Signal()
