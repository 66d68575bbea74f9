"""Route registration for ticket endpoints."""
from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    ServiceQueueViewSet,
    TicketSubmissionViewSet,
    TicketViewSet,
    health,
)

router = DefaultRouter()
router.register(
    "tickets/submissions",
    TicketSubmissionViewSet,
    basename="ticket-submission",
)
router.register("tickets", TicketViewSet, basename="ticket")
router.register("queues", ServiceQueueViewSet, basename="queue")

urlpatterns = [
    path("healthz/", health, name="ticket-health"),
    path("", include(router.urls)),
]
