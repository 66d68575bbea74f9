"""Route registration for form endpoints."""
from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .views import FormViewSet

router = SimpleRouter()
router.register("forms", FormViewSet, basename="form")

urlpatterns = [
    path("", include(router.urls)),
]
