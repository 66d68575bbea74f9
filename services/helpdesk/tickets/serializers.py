"""Serializers for ticket entities."""
from __future__ import annotations

from typing import Any, Dict

from rest_framework import serializers

from forms.models import Form, FormField
from forms.visibility import filter_submission, missing_required

from .models import ServiceQueue, Ticket, TicketSubmission


class ServiceQueueSerializer(serializers.ModelSerializer):
    ticket_count = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = ServiceQueue
        fields = [
            "id",
            "name",
            "description",
            "queue_type",
            "active",
            "ticket_count",
            "created_at",
        ]


class TicketSerializer(serializers.ModelSerializer):
    class Meta:
        model = Ticket
        fields = [
            "id",
            "title",
            "description",
            "status",
            "priority",
            "form_id",
            "requester_id",
            "assignee_id",
            "queue",
            "payload",
            "created_at",
            "updated_at",
        ]

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the form's visibility rules to the answers being written."""

        if self.instance is not None and "payload" not in attrs:
            return attrs
        form_id = attrs.get("form_id", getattr(self.instance, "form_id", None))
        answers = attrs.get("payload") or {}
        if form_id is None or not isinstance(answers, dict):
            return attrs
        fields = list(FormField.objects.filter(form_id=form_id))
        if not fields:
            return attrs
        missing = missing_required(fields, answers)
        if missing:
            raise serializers.ValidationError(
                {"payload": [f"Field {name} is required." for name in missing]}
            )
        attrs["payload"] = filter_submission(fields, answers)
        return attrs


class TicketAssignSerializer(serializers.Serializer):
    assignee_id = serializers.IntegerField()


class TicketSubmissionSerializer(serializers.ModelSerializer):
    ticket = TicketSerializer(read_only=True)

    class Meta:
        model = TicketSubmission
        fields = [
            "id",
            "client_reference",
            "status",
            "ticket",
            "error_message",
            "created_at",
            "updated_at",
            "completed_at",
        ]


class TicketSubmissionRequestSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    form_id = serializers.IntegerField()
    assignee_id = serializers.IntegerField(required=False, allow_null=True)
    requester_id = serializers.IntegerField(required=False, allow_null=True)
    status = serializers.ChoiceField(choices=Ticket.STATUS_CHOICES, required=False, default=Ticket.OPEN)
    priority = serializers.ChoiceField(choices=Ticket.PRIORITY_CHOICES, default=Ticket.MEDIUM)
    payload = serializers.JSONField(required=False, default=dict)
    client_reference = serializers.UUIDField(required=False)

    def to_internal_value(self, data: Dict[str, Any]) -> Dict[str, Any]:  # type: ignore[override]
        """Ensure payload defaults to a JSON object and strip empty metadata."""

        internal = super().to_internal_value(data)
        payload = internal.get("payload") or {}
        if not isinstance(payload, dict):
            raise serializers.ValidationError({"payload": "Must be a JSON object."})
        internal["payload"] = payload
        return internal

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        form = Form.objects.prefetch_related("fields").filter(pk=attrs["form_id"]).first()
        if form is not None:
            missing = missing_required(form.fields.all(), attrs["payload"])
            if missing:
                raise serializers.ValidationError(
                    {"payload": [f"Field {name} is required." for name in missing]}
                )
        return attrs
