"""Serializers for automation triggers."""
from __future__ import annotations

import json
from typing import Any, Dict

from rest_framework import serializers

from .engine import ACTION_TYPES
from .models import Trigger
from .rules import (
    OPERATORS,
    TICKET_CREATED,
    TICKET_UPDATED,
    RuleFormatError,
    parse_actions,
    parse_conditions,
)


class JSONTextField(serializers.Field):
    """A JSON document stored as text.

    Strings are stored exactly as posted; decoded structures are encoded
    compactly. The stored text is returned unchanged.
    """

    def to_internal_value(self, data: Any) -> str:
        if isinstance(data, str):
            return data
        if isinstance(data, (list, dict)):
            return json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        raise serializers.ValidationError("Must be a JSON string, object or list.")

    def to_representation(self, value: str) -> str:
        return value


def _count(parser, raw: Any) -> int:
    if raw is None:
        return 0
    try:
        return len(parser(raw))
    except RuleFormatError:
        return 0


class TriggerSerializer(serializers.ModelSerializer):
    conditions = JSONTextField()
    actions = JSONTextField()

    class Meta:
        model = Trigger
        fields = [
            "id",
            "name",
            "description",
            "event",
            "conditions",
            "actions",
            "active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["event", "created_at", "updated_at"]

    def validate_conditions(self, value: str) -> str:
        try:
            group = parse_conditions(value)
        except RuleFormatError as exc:
            raise serializers.ValidationError(str(exc)) from exc
        for condition in group.all_conditions + group.any_conditions:
            if condition.operator not in OPERATORS:
                raise serializers.ValidationError(f"Unsupported operator: {condition.operator}.")
        return value

    def validate_actions(self, value: str) -> str:
        try:
            actions = parse_actions(value)
        except RuleFormatError as exc:
            raise serializers.ValidationError(str(exc)) from exc
        for action in actions:
            if action.type not in ACTION_TYPES:
                raise serializers.ValidationError(f"Unsupported action type: {action.type}.")
        return value

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        conditions = attrs.get("conditions")
        actions = attrs.get("actions")
        if self.instance is not None:
            conditions = conditions if conditions is not None else self.instance.conditions
            actions = actions if actions is not None else self.instance.actions
        if not _count(parse_conditions, conditions):
            raise serializers.ValidationError({"conditions": "Add at least one condition."})
        if not _count(parse_actions, actions):
            raise serializers.ValidationError({"actions": "Add at least one action."})
        return attrs


class TriggerPreviewSerializer(serializers.Serializer):
    ticket = serializers.IntegerField()
    event = serializers.ChoiceField(choices=[TICKET_CREATED, TICKET_UPDATED])
