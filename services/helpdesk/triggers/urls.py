"""Route registration for trigger endpoints."""
from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .views import TriggerViewSet

router = SimpleRouter()
router.register("triggers", TriggerViewSet, basename="trigger")

urlpatterns = [
    path("", include(router.urls)),
]
