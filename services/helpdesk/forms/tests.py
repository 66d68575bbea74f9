"""Tests for form definitions and field visibility."""
from __future__ import annotations

from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework.test import APIClient

from .models import Form, FormField
from .visibility import (
    filter_submission,
    is_visible,
    missing_required,
    parse_visibility_rules,
    visible_field_names,
)


def _field(name, rules=None, section="", field_type="text", required=False):
    return FormField(
        name=name,
        label=name.title(),
        field_type=field_type,
        required=required,
        section=section,
        visibility_rules=rules or [],
    )


def _shown_when(source, value, operator="equals"):
    return [{"source_field_id": source, "operator": operator, "value": value}]


class VisibilityTests(SimpleTestCase):
    def test_field_without_rules_is_visible(self) -> None:
        self.assertTrue(is_visible(_field("summary"), {}))

    def test_toggling_source_answer_keeps_hidden_value(self) -> None:
        field_b = _field("b", _shown_when("a", "yes"))
        form_values = {"a": "no", "b": "kept"}
        self.assertFalse(is_visible(field_b, form_values))

        form_values["a"] = "yes"
        self.assertTrue(is_visible(field_b, form_values))

        form_values["a"] = "no"
        self.assertFalse(is_visible(field_b, form_values))
        self.assertEqual(form_values["b"], "kept")

    def test_every_rule_must_hold(self) -> None:
        field = _field(
            "details",
            _shown_when("kind", "hardware") + _shown_when("site", "hq"),
        )
        self.assertFalse(is_visible(field, {"kind": "hardware", "site": "branch"}))
        self.assertTrue(is_visible(field, {"kind": "hardware", "site": "hq"}))

    def test_checkbox_answers_and_contains(self) -> None:
        field = _field("cable_type", _shown_when("devices", "monitor"))
        self.assertTrue(is_visible(field, {"devices": ["laptop", "monitor"]}))
        self.assertFalse(is_visible(field, {"devices": ["laptop"]}))

        field = _field("network_notes", _shown_when("issue", "network", operator="contains"))
        self.assertTrue(is_visible(field, {"issue": "Network Issue"}))

    def test_camel_case_rules_are_read(self) -> None:
        rules = parse_visibility_rules([{"sourceFieldId": "a", "value": "yes"}, "bogus"])
        self.assertEqual(len(rules), 1)
        self.assertEqual(rules[0].source_field_id, "a")
        self.assertEqual(rules[0].operator, "equals")

    def test_hidden_section_hides_its_fields(self) -> None:
        fields = [
            _field("kind"),
            _field("hardware", _shown_when("kind", "hardware"), field_type="section"),
            _field("serial", section="hardware"),
        ]
        self.assertEqual(visible_field_names(fields, {"kind": "software"}), {"kind"})
        self.assertEqual(
            visible_field_names(fields, {"kind": "hardware"}),
            {"kind", "hardware", "serial"},
        )

    def test_section_cycle_is_hidden(self) -> None:
        fields = [
            _field("one", section="two", field_type="section"),
            _field("two", section="one", field_type="section"),
        ]
        with self.assertLogs("forms.visibility", level="WARNING"):
            self.assertEqual(visible_field_names(fields, {}), set())

    def test_filter_submission_drops_hidden_answers_only(self) -> None:
        fields = [_field("a"), _field("b", _shown_when("a", "yes"))]
        form_values = {"a": "no", "b": "stale", "extra": "1"}
        self.assertEqual(filter_submission(fields, form_values), {"a": "no", "extra": "1"})
        self.assertEqual(form_values["b"], "stale")

    def test_missing_required_ignores_hidden_fields(self) -> None:
        fields = [
            _field("a"),
            _field("b", _shown_when("a", "yes"), required=True),
            _field("c", required=True),
        ]
        self.assertEqual(missing_required(fields, {"a": "no", "c": " "}), ["c"])
        self.assertEqual(missing_required(fields, {"a": "yes", "c": "ok", "b": []}), ["b"])


class FormApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def test_create_and_list_forms(self) -> None:
        payload = {
            "name": "Employee Onboarding",
            "description": "Collects basic employee data.",
            "fields": [
                {
                    "name": "first_name",
                    "label": "First Name",
                    "field_type": "text",
                    "required": True,
                    "metadata": {},
                },
                {
                    "name": "laptop_model",
                    "label": "Laptop model",
                    "field_type": "select",
                    "visibility_rules": [{"sourceFieldId": "first_name", "value": "Ada"}],
                    "metadata": {"options": ["Air", "Pro"]},
                },
            ],
        }
        response = self.client.post(reverse("form-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)

        response = self.client.get(reverse("form-list"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        form = Form.objects.get()
        self.assertEqual(form.fields.count(), 2)
        self.assertEqual(
            form.fields.get(name="laptop_model").visibility_rules,
            [{"source_field_id": "first_name", "operator": "equals", "value": "Ada"}],
        )

    def test_rejects_unknown_operator_and_section(self) -> None:
        payload = {
            "name": "Broken",
            "fields": [
                {
                    "name": "a",
                    "label": "A",
                    "field_type": "text",
                    "visibility_rules": [{"source_field_id": "b", "operator": "matches", "value": "x"}],
                }
            ],
        }
        response = self.client.post(reverse("form-list"), payload, format="json")
        self.assertEqual(response.status_code, 400)

        payload["fields"][0]["visibility_rules"] = []
        payload["fields"][0]["section"] = "missing"
        response = self.client.post(reverse("form-list"), payload, format="json")
        self.assertEqual(response.status_code, 400)

    def test_visibility_endpoint(self) -> None:
        form = Form.objects.create(name="Network")
        FormField.objects.create(form=form, name="a", label="A", field_type="select", order=0)
        FormField.objects.create(
            form=form,
            name="b",
            label="B",
            field_type="text",
            required=True,
            order=1,
            visibility_rules=_shown_when("a", "yes"),
        )

        url = reverse("form-visibility", args=[form.id])
        response = self.client.post(url, {"values": {"a": "no"}}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["visible"], ["a"])
        self.assertEqual(response.data["missing_required"], [])

        response = self.client.post(url, {"values": {"a": "yes"}}, format="json")
        self.assertEqual(response.data["visible"], ["a", "b"])
        self.assertEqual(response.data["missing_required"], ["b"])
