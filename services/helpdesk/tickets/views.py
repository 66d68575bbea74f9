"""API views for managing tickets and service queues."""
from __future__ import annotations

import uuid
from django.db.models import Count
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.request import Request
from rest_framework.response import Response

from triggers.rules import TICKET_CREATED, TICKET_UPDATED
from triggers.services import run_ticket_triggers

from .models import ServiceQueue, Ticket, TicketSubmission
from .serializers import (
    ServiceQueueSerializer,
    TicketAssignSerializer,
    TicketSerializer,
    TicketSubmissionRequestSerializer,
    TicketSubmissionSerializer,
)
from .tasks import process_ticket_submission


class ServiceQueueViewSet(viewsets.ModelViewSet):
    queryset = ServiceQueue.objects.annotate(ticket_count=Count("tickets")).all()
    serializer_class = ServiceQueueSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "created_at"]
    ordering = ["name"]


class TicketViewSet(viewsets.ModelViewSet):
    queryset = Ticket.objects.all()
    serializer_class = TicketSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["title", "description", "status", "priority"]
    ordering_fields = ["created_at", "updated_at", "priority"]
    ordering = ["-created_at"]

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        params = self.request.query_params
        for param, lookup in (
            ("status", "status"),
            ("priority", "priority"),
            ("queue", "queue_id"),
            ("assignee", "assignee_id"),
        ):
            value = params.get(param)
            if value:
                queryset = queryset.filter(**{lookup: value})
        return queryset

    def perform_create(self, serializer):  # type: ignore[override]
        ticket = serializer.save()
        run_ticket_triggers(ticket, TICKET_CREATED)

    def perform_update(self, serializer):  # type: ignore[override]
        ticket = serializer.save()
        run_ticket_triggers(ticket, TICKET_UPDATED)

    @action(detail=True, methods=["post"], url_path="resolve")
    def resolve(self, request, *args, **kwargs):  # type: ignore[override]
        """Mark a ticket as resolved."""

        ticket = self.get_object()
        ticket.status = Ticket.RESOLVED
        ticket.save(update_fields=["status", "updated_at"])
        run_ticket_triggers(ticket, TICKET_UPDATED)
        serializer = self.get_serializer(ticket)
        return Response(serializer.data)

    @action(detail=True, methods=["post"], url_path="assign")
    def assign(self, request, *args, **kwargs):  # type: ignore[override]
        """Hand a ticket to a resolver and mark it in progress."""

        payload = TicketAssignSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        ticket = self.get_object()
        ticket.assignee_id = payload.validated_data["assignee_id"]
        ticket.status = Ticket.IN_PROGRESS
        ticket.save(update_fields=["assignee_id", "status", "updated_at"])
        run_ticket_triggers(ticket, TICKET_UPDATED)
        serializer = self.get_serializer(ticket)
        return Response(serializer.data)


class TicketSubmissionViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = TicketSubmission.objects.select_related("ticket").all()
    serializer_class = TicketSubmissionSerializer
    lookup_field = "id"
    lookup_value_regex = "[0-9a-f\\-]+"

    def create(self, request: Request, *args, **kwargs):  # type: ignore[override]
        payload_serializer = TicketSubmissionRequestSerializer(data=request.data)
        payload_serializer.is_valid(raise_exception=True)
        data = payload_serializer.validated_data

        client_reference = data.get("client_reference")
        submission: TicketSubmission | None = None
        if client_reference is not None:
            submission = TicketSubmission.objects.filter(client_reference=client_reference).first()
            if submission:
                if submission.status == TicketSubmission.FAILED:
                    submission.status = TicketSubmission.PENDING
                    submission.error_message = ""
                    submission.ticket = None
                    submission.completed_at = None
                    submission.request_payload = {
                        key: value for key, value in data.items() if key != "client_reference"
                    }
                    submission.save(
                        update_fields=[
                            "status",
                            "error_message",
                            "ticket",
                            "completed_at",
                            "request_payload",
                            "updated_at",
                        ]
                    )
                if submission.status in {TicketSubmission.PENDING, TicketSubmission.PROCESSING}:
                    process_ticket_submission.delay(str(submission.id))
                    submission.refresh_from_db()
                serializer = self.get_serializer(submission)
                status_code = (
                    status.HTTP_200_OK
                    if submission.status == TicketSubmission.COMPLETED
                    else status.HTTP_202_ACCEPTED
                )
                return Response(serializer.data, status=status_code)

        if submission is None:
            submission = TicketSubmission.objects.create(
                client_reference=client_reference or uuid.uuid4(),
                request_payload={
                    key: value for key, value in data.items() if key != "client_reference"
                },
            )

        process_ticket_submission.delay(str(submission.id))
        serializer = self.get_serializer(submission)
        return Response(serializer.data, status=status.HTTP_202_ACCEPTED)


@api_view(["GET"])
def health(request: Request):  # type: ignore[override]
    """Readiness endpoint for orchestration tooling."""

    return Response({"status": "ok"})
