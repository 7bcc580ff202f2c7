"""Management command to list registered cache rules."""

from __future__ import annotations

from django.core.management.base import BaseCommand

from autocache.services import get_dedicated_manager, get_registry


class Command(BaseCommand):
    """List registered cache rules and dedicated cache models."""

    help = "List registered cache rules and dedicated cache models"

    def handle(self, *args, **options) -> None:
        rules = get_registry().rules

        if not rules:
            self.stdout.write(self.style.WARNING("No cache rules registered."))
        else:
            self.stdout.write(self.style.SUCCESS(f"Registered cache rules ({len(rules)}):"))
            self.stdout.write("")

        for rule in rules:
            mode = "sync" if rule.synchronous else self.style.WARNING("async")
            self.stdout.write(f"  {rule.owner_table}.{rule.field}")
            self.stdout.write(f"    Rule:       {rule.label}")
            self.stdout.write(f"    Watching:   {self._format_watching(rule.watching.as_dict())}")
            self.stdout.write(f"    Operations: {', '.join(sorted(str(op) for op in rule.operations))}")
            self.stdout.write(f"    Mode:       {mode}")
            if rule.on_update:
                self.stdout.write(f"    On update:  {rule.on_update.describe()}")
            if rule.resolve_affected is None:
                self.stdout.write(f"    Resolver:   {self.style.WARNING('none (manual recalculation only)')}")
            self.stdout.write("")

        associations = get_dedicated_manager().associations()
        if associations:
            self.stdout.write(self.style.SUCCESS(f"Dedicated cache models ({len(associations)}):"))
            for association in associations:
                self.stdout.write(
                    f"  {association.model._meta.label} -> {association.parent_model._meta.label}"
                    f".{association.accessor_name}"
                )

    def _format_watching(self, watching: dict[str, list[str]]) -> str:
        if not watching:
            return "nothing"
        parts = []
        for table, fields in watching.items():
            parts.append(f"{table}[{', '.join(fields) if fields else '*'}]")
        return "; ".join(parts)
