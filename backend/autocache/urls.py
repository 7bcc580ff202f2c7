from __future__ import annotations

from django.urls import path

from . import views

urlpatterns = [
    path("rules/", views.CacheRulesView.as_view(), name="autocache-rules"),
    path("recalculate/", views.RecalculateView.as_view(), name="autocache-recalculate"),
]
