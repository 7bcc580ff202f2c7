from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import RecalculateRequestSerializer
from .services import get_dedicated_manager, get_engine, get_registry

logger = logging.getLogger(__name__)


class CacheRulesView(APIView):
    """GET /api/autocache/rules/ - Registered cache rules and dedicated cache models (admin-only)."""

    permission_classes = [IsAuthenticated, IsAdminUser]

    def get(self, request):
        registry = get_registry()
        dedicated = get_dedicated_manager()
        return Response(
            {
                "rules": [rule.describe() for rule in registry.rules],
                "managed_fields": registry.all_managed_cache_fields(),
                "dedicated_models": [
                    {
                        "model": association.model._meta.label,
                        "parent": association.parent_model._meta.label,
                        "accessor": association.accessor_name,
                    }
                    for association in dedicated.associations()
                ],
            },
            status=status.HTTP_200_OK,
        )


class RecalculateView(APIView):
    """POST /api/autocache/recalculate/ - Operator-triggered recalculation (admin-only)."""

    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request):
        serializer = RecalculateRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        model = serializer.validated_data["model"]
        fields = serializer.validated_data["fields"]
        ids = serializer.validated_data.get("ids")

        queryset = model._default_manager.order_by("pk")
        if ids:
            queryset = queryset.filter(pk__in=ids)

        summary = get_engine().recalculate(queryset, fields)
        logger.info(
            "Manual recalculation of %s (%s) by %s: %s",
            model._meta.label,
            ", ".join(fields),
            request.user,
            summary.as_dict(),
        )
        return Response(
            {"model": model._meta.label, "fields": fields, **summary.as_dict()},
            status=status.HTTP_200_OK,
        )
