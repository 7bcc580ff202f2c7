from __future__ import annotations

from django.apps import apps
from rest_framework import serializers

from .services import get_registry


class RecalculateRequestSerializer(serializers.Serializer):
    model = serializers.CharField()
    fields = serializers.ListField(child=serializers.CharField(), required=False, allow_empty=False)
    ids = serializers.ListField(child=serializers.CharField(), required=False, allow_empty=False)

    def validate_model(self, value: str):
        try:
            return apps.get_model(value)
        except (LookupError, ValueError):
            raise serializers.ValidationError(f"Unknown model: {value}")

    def validate(self, attrs):
        model = attrs["model"]
        registry = get_registry()
        managed = [rule.field for rule in registry.rules_for_model(model)]
        if not managed:
            raise serializers.ValidationError({"model": [f"{model._meta.label} has no cache fields."]})

        fields = attrs.get("fields") or managed
        unknown = [name for name in fields if name not in managed]
        if unknown:
            raise serializers.ValidationError({"fields": [f"Not a cache field: {', '.join(unknown)}"]})
        attrs["fields"] = list(dict.fromkeys(fields))
        return attrs
