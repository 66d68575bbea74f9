"""Tests for the trigger rule DSL, matching, actions and ticket automation."""
from __future__ import annotations

import json
from types import SimpleNamespace

from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from rest_framework.test import APIClient

from tickets.models import ServiceQueue, Ticket

from .engine import TriggerRule, apply_actions, fold_actions, select_matching_triggers
from .models import Trigger
from .rules import (
    TICKET_ANY,
    TICKET_CREATED,
    TICKET_UPDATED,
    Action,
    Condition,
    ConditionGroup,
    RuleFormatError,
    evaluate,
    evaluate_group,
    infer_event,
    parse_actions,
    parse_conditions,
    ticket_event_values,
)
from .services import build_ticket_context, run_ticket_triggers


def cond(field, value, operator="equals"):
    return Condition(field=field, operator=operator, value=value)


class ConditionTests(SimpleTestCase):
    def test_unconfigured_condition_always_passes(self) -> None:
        for context in ({}, {"status": "aberto"}, {"status": ["a", "b"]}):
            self.assertTrue(evaluate(cond("", "aberto"), context))
            self.assertTrue(evaluate(cond("status", ""), context))
            self.assertTrue(evaluate(cond("status", "", operator="not_equals"), context))

    def test_missing_value_fails_every_operator(self) -> None:
        for operator in ("equals", "not_equals", "contains"):
            self.assertFalse(evaluate(cond("queue", "8", operator), {}))
            self.assertFalse(evaluate(cond("queue", "8", operator), {"queue": ""}))
            self.assertFalse(evaluate(cond("queue", "8", operator), {"queue": None}))
            self.assertFalse(evaluate(cond("queue", "8", operator), {"queue": []}))

    def test_scalar_operators(self) -> None:
        context = {"status": "aberto"}
        self.assertTrue(evaluate(cond("status", "aberto"), context))
        self.assertFalse(evaluate(cond("status", "fechado"), context))
        self.assertTrue(evaluate(cond("status", "fechado", "not_equals"), context))
        self.assertFalse(evaluate(cond("status", "aberto", "not_equals"), context))

    def test_multi_value_operators(self) -> None:
        context = {"devices": ["a", "b"]}
        self.assertTrue(evaluate(cond("devices", "b"), context))
        self.assertFalse(evaluate(cond("devices", "c"), context))
        self.assertTrue(evaluate(cond("devices", "c", "not_equals"), context))
        self.assertFalse(evaluate(cond("devices", "a", "not_equals"), context))
        self.assertTrue(evaluate(cond("devices", "B", "contains"), context))

    def test_contains_is_case_insensitive(self) -> None:
        self.assertTrue(evaluate(cond("subject", "network", "contains"), {"subject": "Network Issue"}))
        self.assertFalse(evaluate(cond("subject", "printer", "contains"), {"subject": "Network Issue"}))

    def test_unknown_operator_fails_open(self) -> None:
        self.assertTrue(evaluate(cond("status", "x", "starts_with"), {"status": "aberto"}))
        self.assertTrue(evaluate(cond("tags", "x", "starts_with"), {"tags": ["a"]}))

    def test_non_string_context_values(self) -> None:
        self.assertTrue(evaluate(cond("count", "3"), {"count": 3}))
        self.assertTrue(evaluate(cond("agree", "true"), {"agree": True}))
        self.assertTrue(evaluate(cond("ids", "2"), {"ids": [1, 2]}))


class GroupTests(SimpleTestCase):
    def test_empty_group_is_satisfied(self) -> None:
        self.assertTrue(evaluate_group(ConditionGroup(), {}))

    def test_all_and_any(self) -> None:
        group = ConditionGroup(
            all_conditions=(cond("status", "aberto"),),
            any_conditions=(cond("priority", "alta"), cond("priority", "critica")),
        )
        self.assertTrue(evaluate_group(group, {"status": "aberto", "priority": "critica"}))
        self.assertFalse(evaluate_group(group, {"status": "aberto", "priority": "baixa"}))
        self.assertFalse(evaluate_group(group, {"status": "fechado", "priority": "alta"}))

    def test_any_only_group(self) -> None:
        group = ConditionGroup(any_conditions=(cond("queue", "1"), cond("queue", "2")))
        self.assertTrue(evaluate_group(group, {"queue": "2"}))
        self.assertFalse(evaluate_group(group, {"queue": "3"}))

    def test_evaluation_is_repeatable(self) -> None:
        group = ConditionGroup(all_conditions=(cond("form", "12"),))
        context = {"form": "12"}
        self.assertEqual(evaluate_group(group, context), evaluate_group(group, context))
        self.assertEqual(context, {"form": "12"})


class EventInferenceTests(SimpleTestCase):
    def test_event_condition_anywhere_decides(self) -> None:
        created = cond("ticket_event", "created")
        self.assertEqual(infer_event([created], []), TICKET_CREATED)
        self.assertEqual(infer_event([cond("status", "aberto")], [created]), TICKET_CREATED)
        self.assertEqual(infer_event([], [cond("ticket_event", "updated")]), TICKET_UPDATED)
        self.assertEqual(infer_event([cond("ticket_event", "any")]), TICKET_ANY)

    def test_defaults_to_updated(self) -> None:
        self.assertEqual(infer_event([], []), TICKET_UPDATED)
        self.assertEqual(infer_event([cond("form", "12")], []), TICKET_UPDATED)
        self.assertEqual(infer_event([cond("ticket_event", "deleted")], []), TICKET_UPDATED)

    def test_event_context_values(self) -> None:
        self.assertEqual(ticket_event_values(TICKET_CREATED), ["created", "any"])
        self.assertEqual(ticket_event_values(TICKET_UPDATED), ["updated", "any"])


class ParsingTests(SimpleTestCase):
    def test_current_format(self) -> None:
        group = parse_conditions(
            '{"all":[{"field":"status","operator":"equals","value":"aberto"}],"any":[]}'
        )
        self.assertEqual(group.all_conditions, (cond("status", "aberto"),))
        self.assertEqual(group.any_conditions, ())

    def test_legacy_list_reads_as_all_group(self) -> None:
        conditions = [{"field": "form", "operator": "equals", "value": "12"}]
        legacy = parse_conditions(json.dumps(conditions))
        wrapped = parse_conditions(json.dumps({"all": conditions, "any": []}))
        self.assertEqual(legacy, wrapped)
        for context in ({"form": "12"}, {"form": "13"}, {}):
            self.assertEqual(evaluate_group(legacy, context), evaluate_group(wrapped, context))

    def test_legacy_spellings_are_upgraded(self) -> None:
        group = parse_conditions(
            '{"all":[{"field":"ticket","value":"created_updated"},{"field":"form","value":"3"}]}'
        )
        self.assertEqual(group.all_conditions[0], cond("ticket_event", "any"))
        self.assertEqual(group.all_conditions[1], cond("form", "3"))
        actions = parse_actions('[{"type":"action.assign_queue","value":"8"}]')
        self.assertEqual(actions, (Action(type="assign_queue", value="8"),))

    def test_malformed_documents_raise(self) -> None:
        for raw in ("", "not json", "42", '{"all": "status"}', '[1, 2]'):
            with self.assertRaises(RuleFormatError):
                parse_conditions(raw)
        for raw in ("", "{}", '["assign_queue"]'):
            with self.assertRaises(RuleFormatError):
                parse_actions(raw)

    def test_undecodable_and_deeply_nested_documents_raise(self) -> None:
        with self.assertRaises(RuleFormatError):
            parse_conditions(b"\xff\xfe{")
        with self.assertRaises(RuleFormatError):
            parse_actions(b"\xff")
        with self.assertRaises(RuleFormatError):
            parse_conditions("[" * 100000 + "]" * 100000)


def rule(rule_id, actions, conditions=(), event=TICKET_CREATED, active=True):
    return TriggerRule(
        id=rule_id,
        name=f"trigger {rule_id}",
        event=event,
        conditions=ConditionGroup(all_conditions=tuple(conditions)),
        actions=tuple(actions),
        active=active,
    )


class MatchingTests(SimpleTestCase):
    def test_form_trigger_routes_to_queue(self) -> None:
        trigger = rule(1, [Action("assign_queue", "8")], [cond("form", "12")])
        context = {"form": "12", "ticket_event": ticket_event_values(TICKET_CREATED)}
        matched = select_matching_triggers(TICKET_CREATED, [trigger], context)
        self.assertEqual(matched, [trigger])
        self.assertEqual(fold_actions(matched), {"queue_id": 8})

    def test_event_scope(self) -> None:
        created = rule(1, [], event=TICKET_CREATED)
        updated = rule(2, [], event=TICKET_UPDATED)
        either = rule(3, [], event=TICKET_ANY)
        matched = select_matching_triggers(TICKET_UPDATED, [created, updated, either], {})
        self.assertEqual([item.id for item in matched], [2, 3])

    def test_inactive_triggers_are_ignored(self) -> None:
        matched = select_matching_triggers(TICKET_CREATED, [rule(1, [], active=False)], {})
        self.assertEqual(matched, [])

    def test_order_is_ascending_id_and_last_write_wins(self) -> None:
        high = rule(1, [Action("set_priority", "alta")])
        low = rule(2, [Action("set_priority", "baixa")])
        matched = select_matching_triggers(TICKET_CREATED, [low, high], {})
        self.assertEqual([item.id for item in matched], [1, 2])
        self.assertEqual(fold_actions(matched), {"priority": "baixa"})

    def test_corrupt_records_are_skipped(self) -> None:
        good = SimpleNamespace(
            id=2,
            name="good",
            event=TICKET_CREATED,
            conditions='{"all":[],"any":[]}',
            actions='[{"type":"set_status","value":"em_andamento"}]',
            active=True,
        )
        bad = SimpleNamespace(
            id=1, name="bad", event=TICKET_CREATED, conditions="{oops", actions="[]", active=True
        )
        with self.assertLogs("triggers.engine", level="WARNING") as logs:
            matched = select_matching_triggers(TICKET_CREATED, [bad, good], {})
        self.assertEqual([item.id for item in matched], [2])
        self.assertIn("Skipping trigger 1", logs.output[0])

    def test_unknown_operators_are_reported_on_load(self) -> None:
        record = SimpleNamespace(
            id=7,
            name="newer client",
            event=TICKET_CREATED,
            conditions='{"all":[{"field":"status","operator":"starts_with","value":"ab"}],"any":[]}',
            actions='[{"type":"set_priority","value":"alta"}]',
            active=True,
        )
        with self.assertLogs("triggers.engine", level="WARNING") as logs:
            matched = select_matching_triggers(TICKET_CREATED, [record], {"status": "fechado"})
        self.assertEqual([item.id for item in matched], [7])
        self.assertEqual(len(logs.output), 1)
        self.assertIn("unknown operators starts_with", logs.output[0])


class ActionTests(SimpleTestCase):
    def test_actions_fold_in_order(self) -> None:
        patch = apply_actions(
            [
                Action("set_status", "aguardando_usuario"),
                Action("assign_queue", "3"),
                Action("set_status", "resolvido"),
            ]
        )
        self.assertEqual(patch, {"status": "resolvido", "queue_id": 3})

    def test_assign_resolver_marks_in_progress(self) -> None:
        patch = apply_actions([Action("assign_resolver", "42")])
        self.assertEqual(patch, {"assignee_id": 42, "status": Ticket.IN_PROGRESS})
        patch = apply_actions([Action("assign_resolver", "42"), Action("set_status", "aberto")])
        self.assertEqual(patch["status"], "aberto")

    def test_input_patch_is_not_mutated(self) -> None:
        original = {"priority": "alta"}
        patch = apply_actions([Action("set_priority", "baixa")], original)
        self.assertEqual(original, {"priority": "alta"})
        self.assertEqual(patch, {"priority": "baixa"})

    def test_unusable_actions_are_skipped(self) -> None:
        with self.assertLogs("triggers.engine", level="WARNING"):
            patch = apply_actions(
                [Action("assign_queue", "eight"), Action("send_email", "x"), Action("set_priority", "alta")]
            )
        self.assertEqual(patch, {"priority": "alta"})


def store_trigger(name, conditions, actions, **kwargs):
    return Trigger.objects.create(
        name=name,
        conditions=json.dumps(conditions),
        actions=json.dumps(actions),
        **kwargs,
    )


def on_create(*conditions):
    return {
        "all": [{"field": "ticket_event", "operator": "equals", "value": "created"}, *conditions],
        "any": [],
    }


class TicketAutomationTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def _create_ticket(self, **overrides):
        payload = {"title": "Cannot print", "form_id": 12, "priority": "media"}
        payload.update(overrides)
        with self.settings(CELERY_TASK_ALWAYS_EAGER=True, CELERY_TASK_EAGER_PROPAGATES=True):
            response = self.client.post(reverse("ticket-submission-list"), payload, format="json")
        self.assertEqual(response.status_code, 202)
        return Ticket.objects.get(submissions__id=response.data["id"])

    def test_event_is_derived_on_save(self) -> None:
        trigger = store_trigger("Route", on_create(), [{"type": "assign_queue", "value": "1"}])
        self.assertEqual(trigger.event, TICKET_CREATED)

        trigger.conditions = json.dumps({"all": [], "any": [{"field": "ticket_event", "value": "any"}]})
        trigger.save(update_fields=["conditions"])
        trigger.refresh_from_db()
        self.assertEqual(trigger.event, TICKET_ANY)

        trigger.conditions = "[]"
        trigger.save()
        self.assertEqual(trigger.event, TICKET_UPDATED)

    def test_form_trigger_assigns_queue_on_creation(self) -> None:
        queue = ServiceQueue.objects.create(name="Printers")
        store_trigger(
            "Printers form",
            on_create({"field": "form", "operator": "equals", "value": "12"}),
            [{"type": "assign_queue", "value": str(queue.id)}],
        )

        ticket = self._create_ticket()
        self.assertEqual(ticket.queue_id, queue.id)

        other = self._create_ticket(form_id=13)
        self.assertIsNone(other.queue_id)

    def test_later_trigger_wins(self) -> None:
        store_trigger("A", on_create(), [{"type": "set_priority", "value": "alta"}])
        store_trigger("B", on_create(), [{"type": "set_priority", "value": "baixa"}])

        ticket = self._create_ticket()
        self.assertEqual(ticket.priority, "baixa")

    def test_missing_queue_does_not_block_creation(self) -> None:
        store_trigger("Stale", on_create(), [{"type": "assign_queue", "value": "999"}])

        with self.assertLogs("triggers.services", level="WARNING") as logs:
            ticket = self._create_ticket()
        self.assertIsNone(ticket.queue_id)
        self.assertEqual(ticket.title, "Cannot print")
        self.assertTrue(any("queue 999 does not exist" in line for line in logs.output))

    def test_invalid_values_are_dropped_individually(self) -> None:
        store_trigger(
            "Mixed",
            on_create(),
            [{"type": "set_priority", "value": "critica"}, {"type": "set_status", "value": "bogus"}],
        )
        with self.assertLogs("triggers.services", level="WARNING") as logs:
            ticket = self._create_ticket()
        self.assertEqual(ticket.priority, "critica")
        self.assertEqual(ticket.status, Ticket.OPEN)
        self.assertTrue(any("unknown status 'bogus'" in line for line in logs.output))

    def test_stale_queue_does_not_discard_other_updates(self) -> None:
        store_trigger("Escalate", on_create(), [{"type": "set_priority", "value": "alta"}])
        store_trigger(
            "Stale route",
            on_create(),
            [{"type": "assign_queue", "value": "999"}, {"type": "assign_resolver", "value": "4"}],
        )
        with self.assertLogs("triggers.services", level="WARNING"):
            ticket = self._create_ticket()
        self.assertIsNone(ticket.queue_id)
        self.assertEqual(ticket.priority, "alta")
        self.assertEqual(ticket.assignee_id, 4)
        self.assertEqual(ticket.status, Ticket.IN_PROGRESS)

    def test_corrupt_trigger_does_not_stop_others(self) -> None:
        queue = ServiceQueue.objects.create(name="Catch all")
        Trigger.objects.create(name="Broken", conditions="{not json", actions="[]")
        Trigger.objects.filter(name="Broken").update(event=TICKET_CREATED)
        store_trigger("Works", on_create(), [{"type": "assign_queue", "value": str(queue.id)}])

        with self.assertLogs("triggers.engine", level="WARNING"):
            ticket = self._create_ticket()
        self.assertEqual(ticket.queue_id, queue.id)

    def test_legacy_stored_trigger_still_fires(self) -> None:
        queue = ServiceQueue.objects.create(name="Legacy")
        trigger = Trigger.objects.create(
            name="Old builder",
            conditions=json.dumps([{"field": "ticket", "value": "created"}, {"field": "form", "value": "12"}]),
            actions=json.dumps([{"type": "action.assign_queue", "value": str(queue.id)}]),
        )
        self.assertEqual(trigger.event, TICKET_CREATED)

        ticket = self._create_ticket()
        self.assertEqual(ticket.queue_id, queue.id)

    def test_custom_form_answers_are_matchable(self) -> None:
        store_trigger(
            "Network issues",
            on_create({"field": "subject", "operator": "contains", "value": "network"}),
            [{"type": "assign_resolver", "value": "5"}],
        )
        ticket = self._create_ticket(payload={"subject": "Network Issue on floor 3"})
        self.assertEqual(ticket.assignee_id, 5)
        self.assertEqual(ticket.status, Ticket.IN_PROGRESS)

    @override_settings(TRIGGERS_ENABLED=False)
    def test_kill_switch(self) -> None:
        store_trigger("A", on_create(), [{"type": "set_priority", "value": "alta"}])
        ticket = Ticket.objects.create(title="Quiet", form_id=1)
        run_ticket_triggers(ticket, TICKET_CREATED)
        ticket.refresh_from_db()
        self.assertEqual(ticket.priority, Ticket.MEDIUM)

    def test_context_reflects_ticket(self) -> None:
        queue = ServiceQueue.objects.create(name="Desk")
        ticket = Ticket.objects.create(
            title="Context", form_id=4, queue=queue, payload={"status": "spoofed", "site": "hq"}
        )
        context = build_ticket_context(ticket, TICKET_UPDATED)
        self.assertEqual(context["status"], Ticket.OPEN)
        self.assertEqual(context["queue"], str(queue.id))
        self.assertEqual(context["form"], "4")
        self.assertEqual(context["site"], "hq")
        self.assertEqual(context["ticket_event"], ["updated", "any"])


class TriggerApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def test_create_round_trips_stored_text(self) -> None:
        conditions = '{"all":[{"field":"status","operator":"equals","value":"aberto"}],"any":[]}'
        actions = '[{"type":"assign_queue","value":"8"}]'
        payload = {"name": "Route open", "conditions": conditions, "actions": actions}
        response = self.client.post(reverse("trigger-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["event"], TICKET_UPDATED)

        detail = self.client.get(reverse("trigger-detail", args=[response.data["id"]]))
        self.assertEqual(detail.data["conditions"], conditions)
        self.assertEqual(detail.data["actions"], actions)

    def test_structured_documents_are_encoded_compactly(self) -> None:
        payload = {
            "name": "Structured",
            "conditions": {"all": [{"field": "ticket_event", "operator": "equals", "value": "created"}], "any": []},
            "actions": [{"type": "set_priority", "value": "alta"}],
        }
        response = self.client.post(reverse("trigger-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["event"], TICKET_CREATED)
        self.assertEqual(response.data["actions"], '[{"type":"set_priority","value":"alta"}]')

    def test_event_cannot_be_written(self) -> None:
        payload = {
            "name": "Sneaky",
            "event": TICKET_CREATED,
            "conditions": '{"all":[{"field":"status","value":"aberto"}],"any":[]}',
            "actions": '[{"type":"set_priority","value":"alta"}]',
        }
        response = self.client.post(reverse("trigger-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["event"], TICKET_UPDATED)

    def test_validation(self) -> None:
        base = {
            "name": "Invalid",
            "conditions": '{"all":[{"field":"status","value":"aberto"}],"any":[]}',
            "actions": '[{"type":"set_priority","value":"alta"}]',
        }
        for key, value in (
            ("conditions", "{bad"),
            ("conditions", '{"all":[],"any":[]}'),
            ("conditions", '[{"field":"status","operator":"regex","value":"a"}]'),
            ("actions", "[]"),
            ("actions", '[{"type":"send_email","value":"x"}]'),
        ):
            payload = dict(base, **{key: value})
            response = self.client.post(reverse("trigger-list"), payload, format="json")
            self.assertEqual(response.status_code, 400, (key, value))
            self.assertIn(key, response.data)

    def test_update_replaces_document_and_rederives_event(self) -> None:
        trigger = store_trigger("Edit me", on_create(), [{"type": "set_priority", "value": "alta"}])
        payload = {
            "name": "Edited",
            "description": "",
            "conditions": '{"all":[{"field":"ticket_event","value":"updated"}],"any":[]}',
            "actions": '[{"type":"set_status","value":"resolvido"}]',
            "active": True,
        }
        response = self.client.put(reverse("trigger-detail", args=[trigger.id]), payload, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["event"], TICKET_UPDATED)
        self.assertEqual(response.data["actions"], payload["actions"])

    def test_toggle_and_delete(self) -> None:
        trigger = store_trigger("Toggle", on_create(), [{"type": "set_priority", "value": "alta"}])
        response = self.client.post(reverse("trigger-toggle", args=[trigger.id]), format="json")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["active"])

        response = self.client.delete(reverse("trigger-detail", args=[trigger.id]))
        self.assertEqual(response.status_code, 204)
        self.assertFalse(Trigger.objects.exists())

    def test_preview_does_not_write(self) -> None:
        store_trigger("Bump", on_create(), [{"type": "set_priority", "value": "critica"}])
        ticket = Ticket.objects.create(title="Preview", form_id=1)

        response = self.client.post(
            reverse("trigger-preview"), {"ticket": ticket.id, "event": TICKET_CREATED}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["name"] for item in response.data["matched"]], ["Bump"])
        self.assertEqual(response.data["patch"], {"priority": "critica"})
        ticket.refresh_from_db()
        self.assertEqual(ticket.priority, Ticket.MEDIUM)
