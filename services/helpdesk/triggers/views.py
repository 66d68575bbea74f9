"""API views for automation triggers."""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.request import Request
from rest_framework.response import Response

from tickets.models import Ticket

from .models import Trigger
from .serializers import TriggerPreviewSerializer, TriggerSerializer
from .services import preview_ticket_triggers


class TriggerViewSet(viewsets.ModelViewSet):
    queryset = Trigger.objects.all()
    serializer_class = TriggerSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["name", "description"]
    ordering_fields = ["id", "name", "updated_at"]
    ordering = ["id"]

    @action(detail=True, methods=["post"], url_path="toggle")
    def toggle(self, request, *args, **kwargs):  # type: ignore[override]
        """Flip a trigger between active and inactive."""

        trigger = self.get_object()
        trigger.active = not trigger.active
        trigger.save(update_fields=["active", "updated_at"])
        serializer = self.get_serializer(trigger)
        return Response(serializer.data)

    @action(detail=False, methods=["post"], url_path="preview")
    def preview(self, request: Request, *args, **kwargs):  # type: ignore[override]
        """Show which triggers would fire for a ticket, without applying them."""

        payload = TriggerPreviewSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        ticket = get_object_or_404(Ticket, pk=payload.validated_data["ticket"])
        matched, patch = preview_ticket_triggers(ticket, payload.validated_data["event"])
        return Response(
            {
                "matched": [{"id": rule.id, "name": rule.name} for rule in matched],
                "patch": patch,
            }
        )
