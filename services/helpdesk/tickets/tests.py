"""API tests for tickets, submissions and service queues."""
from __future__ import annotations

import json

from django.test import TestCase
from django.urls import reverse
from rest_framework.test import APIClient

from forms.models import Form, FormField
from triggers.models import Trigger

from .models import ServiceQueue, Ticket


class TicketApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def _submit(self, payload):
        with self.settings(CELERY_TASK_ALWAYS_EAGER=True, CELERY_TASK_EAGER_PROPAGATES=True):
            return self.client.post(reverse("ticket-submission-list"), payload, format="json")

    def test_submit_ticket_via_queue(self) -> None:
        payload = {
            "title": "Laptop provisioning",
            "description": "Provision a laptop for new hire",
            "form_id": 1,
            "requester_id": 2,
            "assignee_id": 3,
            "priority": "alta",
            "status": "aberto",
            "payload": {"first_name": "Ada"},
        }
        response = self._submit(payload)
        self.assertEqual(response.status_code, 202)
        submission_id = response.data["id"]

        submission_detail = self.client.get(
            reverse("ticket-submission-detail", args=[submission_id])
        )
        self.assertEqual(submission_detail.status_code, 200)
        self.assertEqual(submission_detail.data["status"], "completed")
        self.assertIsNotNone(submission_detail.data["ticket"])

        ticket_id = submission_detail.data["ticket"]["id"]
        ticket_detail = self.client.get(reverse("ticket-detail", args=[ticket_id]))
        self.assertEqual(ticket_detail.status_code, 200)
        self.assertEqual(ticket_detail.data["priority"], "alta")
        self.assertEqual(ticket_detail.data["payload"], {"first_name": "Ada"})

    def test_submission_drops_answers_of_hidden_fields(self) -> None:
        form = Form.objects.create(name="Hardware")
        FormField.objects.create(form=form, name="has_asset", label="Asset?", field_type="select")
        FormField.objects.create(
            form=form,
            name="asset_tag",
            label="Asset tag",
            field_type="text",
            visibility_rules=[{"source_field_id": "has_asset", "operator": "equals", "value": "yes"}],
        )

        response = self._submit(
            {
                "title": "Broken monitor",
                "form_id": form.id,
                "payload": {"has_asset": "no", "asset_tag": "A-100"},
            }
        )
        self.assertEqual(response.status_code, 202)
        ticket = Ticket.objects.get()
        self.assertEqual(ticket.payload, {"has_asset": "no"})

    def test_submission_requires_visible_required_fields(self) -> None:
        form = Form.objects.create(name="Access")
        FormField.objects.create(form=form, name="system", label="System", field_type="select")
        FormField.objects.create(
            form=form,
            name="justification",
            label="Justification",
            field_type="textarea",
            required=True,
            visibility_rules=[{"source_field_id": "system", "operator": "equals", "value": "erp"}],
        )

        response = self._submit(
            {"title": "ERP access", "form_id": form.id, "payload": {"system": "erp"}}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("payload", response.data)

        response = self._submit(
            {"title": "Mail access", "form_id": form.id, "payload": {"system": "mail"}}
        )
        self.assertEqual(response.status_code, 202)

    def test_direct_create_applies_form_visibility(self) -> None:
        form = Form.objects.create(name="Hardware")
        FormField.objects.create(form=form, name="has_asset", label="Asset?", field_type="select")
        FormField.objects.create(
            form=form,
            name="asset_tag",
            label="Asset tag",
            field_type="text",
            required=True,
            visibility_rules=[{"source_field_id": "has_asset", "operator": "equals", "value": "yes"}],
        )

        response = self.client.post(
            reverse("ticket-list"),
            {"title": "Dock", "form_id": form.id, "payload": {"has_asset": "yes"}},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("payload", response.data)

        response = self.client.post(
            reverse("ticket-list"),
            {"title": "Dock", "form_id": form.id, "payload": {"has_asset": "no", "asset_tag": "A-7"}},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["payload"], {"has_asset": "no"})
        self.assertEqual(Ticket.objects.get().payload, {"has_asset": "no"})

    def test_resolve_ticket(self) -> None:
        ticket = Ticket.objects.create(
            title="Setup account",
            form_id=1,
            priority=Ticket.MEDIUM,
            status=Ticket.OPEN,
        )

        resolve_response = self.client.post(
            reverse("ticket-resolve", args=[ticket.id]), format="json"
        )
        self.assertEqual(resolve_response.status_code, 200)
        self.assertEqual(resolve_response.data["status"], Ticket.RESOLVED)

    def test_assign_ticket_marks_in_progress(self) -> None:
        ticket = Ticket.objects.create(title="VPN down", form_id=1)

        response = self.client.post(
            reverse("ticket-assign", args=[ticket.id]), {"assignee_id": 7}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["assignee_id"], 7)
        self.assertEqual(response.data["status"], Ticket.IN_PROGRESS)

    def test_update_runs_update_triggers(self) -> None:
        queue = ServiceQueue.objects.create(name="Escalations")
        Trigger.objects.create(
            name="Escalate critical",
            conditions=json.dumps(
                {
                    "all": [
                        {"field": "ticket_event", "operator": "equals", "value": "updated"},
                        {"field": "priority", "operator": "equals", "value": "critica"},
                    ],
                    "any": [],
                }
            ),
            actions=json.dumps([{"type": "assign_queue", "value": str(queue.id)}]),
        )
        ticket = Ticket.objects.create(title="Server room flooding", form_id=1)

        response = self.client.patch(
            reverse("ticket-detail", args=[ticket.id]), {"priority": "critica"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["queue"], queue.id)

    def test_filter_tickets_by_queue(self) -> None:
        queue = ServiceQueue.objects.create(name="Service Desk")
        Ticket.objects.create(title="In queue", form_id=1, queue=queue)
        Ticket.objects.create(title="Unrouted", form_id=1)

        response = self.client.get(reverse("ticket-list"), {"queue": queue.id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["title"] for item in response.data], ["In queue"])

    def test_queue_list_counts_tickets(self) -> None:
        queue = ServiceQueue.objects.create(name="Field Support")
        Ticket.objects.create(title="Printer jam", form_id=1, queue=queue)

        response = self.client.get(reverse("queue-list"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data[0]["ticket_count"], 1)
