"""Serializers for ticket forms."""
from __future__ import annotations

from typing import Any, Dict, List

from rest_framework import serializers

from triggers.rules import OPERATORS

from .models import Form, FormField


class FormFieldSerializer(serializers.ModelSerializer):
    class Meta:
        model = FormField
        fields = [
            "id",
            "name",
            "label",
            "field_type",
            "required",
            "order",
            "section",
            "visibility_rules",
            "metadata",
        ]

    def validate_visibility_rules(self, value: Any) -> List[Dict[str, str]]:
        """Normalise rules to ``source_field_id``/``operator``/``value`` objects."""

        if value in (None, ""):
            return []
        if not isinstance(value, list):
            raise serializers.ValidationError("Must be a list of rules.")
        rules = []
        for rule in value:
            if not isinstance(rule, dict):
                raise serializers.ValidationError("Each rule must be an object.")
            source = rule.get("source_field_id", rule.get("sourceFieldId"))
            if not source:
                raise serializers.ValidationError("Each rule needs a source_field_id.")
            operator = rule.get("operator") or "equals"
            if operator not in OPERATORS:
                raise serializers.ValidationError(f"Unsupported operator: {operator}.")
            rules.append(
                {
                    "source_field_id": str(source),
                    "operator": operator,
                    "value": "" if rule.get("value") is None else str(rule["value"]),
                }
            )
        return rules


class FormSerializer(serializers.ModelSerializer):
    fields = FormFieldSerializer(many=True)

    class Meta:
        model = Form
        fields = [
            "id",
            "name",
            "description",
            "version",
            "is_active",
            "created_at",
            "updated_at",
            "fields",
        ]

    def validate_fields(self, value: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        names = [field["name"] for field in value]
        if len(names) != len(set(names)):
            raise serializers.ValidationError("Field names must be unique within a form.")
        sections = {field["name"] for field in value if field["field_type"] == FormField.SECTION}
        for field in value:
            section = field.get("section")
            if section and section not in sections:
                raise serializers.ValidationError(
                    f"Field {field['name']} references unknown section {section}."
                )
        return value

    def create(self, validated_data):  # type: ignore[override]
        fields = validated_data.pop("fields", [])
        form = Form.objects.create(**validated_data)
        for index, field in enumerate(fields):
            field.pop("order", None)
            FormField.objects.create(form=form, order=index, **field)
        return form

    def update(self, instance, validated_data):  # type: ignore[override]
        fields = validated_data.pop("fields", None)
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        instance.save()

        if fields is not None:
            instance.fields.all().delete()
            for index, field in enumerate(fields):
                field.pop("order", None)
                FormField.objects.create(form=instance, order=index, **field)
        return instance


class VisibilityRequestSerializer(serializers.Serializer):
    values = serializers.DictField(required=False, default=dict)
