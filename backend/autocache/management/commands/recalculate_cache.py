"""Management command to recalculate cached fields (backfills and repairs)."""

from __future__ import annotations

import time

from django.apps import apps
from django.core.management.base import BaseCommand, CommandError

from autocache.services import get_engine, get_registry


class Command(BaseCommand):
    """Recalculate cached fields of a model, writing only values that changed."""

    help = "Recalculate cached fields of a model, writing only values that changed"

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "model",
            type=str,
            help="Model label, e.g. shop.Customer",
        )
        parser.add_argument(
            "--field",
            action="append",
            dest="fields",
            default=[],
            help="Cache field to recalculate (repeatable, default: all cache fields of the model)",
        )
        parser.add_argument(
            "--id",
            action="append",
            dest="ids",
            default=[],
            help="Primary key to recalculate (repeatable, default: all rows)",
        )

    def handle(self, *args, **options) -> None:
        label = options["model"]
        try:
            model = apps.get_model(label)
        except (LookupError, ValueError) as e:
            raise CommandError(f"Unknown model '{label}'") from e

        managed = [rule.field for rule in get_registry().rules_for_model(model)]
        if not managed:
            raise CommandError(f"{model._meta.label} has no registered cache fields")

        fields = options["fields"] or managed
        unknown = sorted(set(fields) - set(managed))
        if unknown:
            raise CommandError(
                f"Not a cache field of {model._meta.label}: {', '.join(unknown)}. "
                f"Available: {', '.join(managed)}"
            )

        queryset = model._default_manager.order_by("pk")
        if options["ids"]:
            queryset = queryset.filter(pk__in=options["ids"])

        self.stdout.write(f"Recalculating {model._meta.label}: {', '.join(fields)}")
        start_time = time.monotonic()
        summary = get_engine().recalculate(queryset, fields)
        duration = time.monotonic() - start_time

        self.stdout.write(
            self.style.SUCCESS(
                f"Updated {summary.records_written}/{summary.records_seen} records "
                f"({summary.fields_written} fields) in {duration:.2f}s"
            )
        )
