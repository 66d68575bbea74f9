"""Condition DSL shared by ticket triggers and form field visibility.

Rules are small JSON documents: a condition names a field, an operator and a
comparison value, and a group combines an ``all`` list (AND) with an ``any``
list (OR). Everything here is pure and side-effect free; the functions operate
on in-memory snapshots handed over by callers and never touch the database.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

EQUALS = "equals"
NOT_EQUALS = "not_equals"
CONTAINS = "contains"

OPERATORS = (EQUALS, NOT_EQUALS, CONTAINS)

TICKET_EVENT_FIELD = "ticket_event"

TICKET_CREATED = "ticket.created"
TICKET_UPDATED = "ticket.updated"
TICKET_ANY = "ticket.any"

EVENT_CHOICES = [
    (TICKET_CREATED, "Ticket created"),
    (TICKET_UPDATED, "Ticket updated"),
    (TICKET_ANY, "Ticket created or updated"),
]

_EVENT_BY_VALUE = {
    "created": TICKET_CREATED,
    "updated": TICKET_UPDATED,
    "any": TICKET_ANY,
}

# Spellings written by older versions of the trigger builder.
_LEGACY_FIELDS = {"ticket": TICKET_EVENT_FIELD}
_LEGACY_EVENT_VALUES = {"created_updated": "any"}
_LEGACY_ACTION_TYPES = {"action.assign_queue": "assign_queue"}


class RuleFormatError(ValueError):
    """Raised when a stored rule document cannot be decoded."""


@dataclass(frozen=True)
class Scalar:
    value: str


@dataclass(frozen=True)
class Multi:
    values: Tuple[str, ...]


ContextValue = Union[Scalar, Multi]


def to_context_value(raw: Any) -> Optional[ContextValue]:
    """Wrap a raw answer as a single or multi-valued context value."""

    if raw is None:
        return None
    if isinstance(raw, (Scalar, Multi)):
        return raw
    if isinstance(raw, (list, tuple, set, frozenset)):
        return Multi(tuple(_as_text(item) for item in raw if item is not None))
    return Scalar(_as_text(raw))


def _as_text(raw: Any) -> str:
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, sort_keys=True)
    return str(raw)


@dataclass(frozen=True)
class Condition:
    field: str
    operator: str = EQUALS
    value: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Condition":
        if not isinstance(data, Mapping):
            raise RuleFormatError(f"Condition must be an object, got {type(data).__name__}")
        value = data.get("value")
        return cls(
            field=_as_text(data.get("field") or ""),
            operator=_as_text(data.get("operator") or EQUALS),
            value="" if value is None else _as_text(value),
        )

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class ConditionGroup:
    all_conditions: Tuple[Condition, ...] = field(default_factory=tuple)
    any_conditions: Tuple[Condition, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.all_conditions) + len(self.any_conditions)

    def to_dict(self) -> dict:
        return {
            "all": [condition.to_dict() for condition in self.all_conditions],
            "any": [condition.to_dict() for condition in self.any_conditions],
        }


@dataclass(frozen=True)
class Action:
    type: str
    value: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Action":
        if not isinstance(data, Mapping):
            raise RuleFormatError(f"Action must be an object, got {type(data).__name__}")
        action_type = _as_text(data.get("type") or "")
        value = data.get("value")
        return cls(
            type=_LEGACY_ACTION_TYPES.get(action_type, action_type),
            value="" if value is None else _as_text(value),
        )

    def to_dict(self) -> dict:
        return {"type": self.type, "value": self.value}


def _load(raw: Any, what: str) -> Any:
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if not isinstance(raw, str):
            return raw
        return json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise RuleFormatError(f"Invalid {what} JSON: {exc}") from exc


def _condition_list(items: Any, key: str) -> Tuple[Condition, ...]:
    if items is None:
        return ()
    if not isinstance(items, list):
        raise RuleFormatError(f"'{key}' must be a list of conditions")
    return tuple(_upgrade(Condition.from_dict(item)) for item in items)


def _upgrade(condition: Condition) -> Condition:
    field_name = _LEGACY_FIELDS.get(condition.field, condition.field)
    if field_name != TICKET_EVENT_FIELD:
        return condition
    value = _LEGACY_EVENT_VALUES.get(condition.value, condition.value)
    return Condition(field=field_name, operator=condition.operator, value=value)


def parse_conditions(raw: Any) -> ConditionGroup:
    """Decode stored trigger conditions.

    Accepts the ``{"all": [...], "any": [...]}`` document as well as the
    legacy bare list, which is read as an all-only group. ``raw`` may be the
    stored JSON text or an already decoded structure.
    """

    data = _load(raw, "conditions")
    if isinstance(data, list):
        return ConditionGroup(all_conditions=_condition_list(data, "all"))
    if isinstance(data, Mapping):
        return ConditionGroup(
            all_conditions=_condition_list(data.get("all"), "all"),
            any_conditions=_condition_list(data.get("any"), "any"),
        )
    raise RuleFormatError("Conditions must be an object with 'all'/'any' lists or a list")


def parse_actions(raw: Any) -> Tuple[Action, ...]:
    """Decode a stored trigger action list."""

    data = _load(raw, "actions")
    if not isinstance(data, list):
        raise RuleFormatError("Actions must be a list")
    return tuple(Action.from_dict(item) for item in data)


def _lookup(context: Mapping[str, Any], field_name: str) -> Optional[ContextValue]:
    try:
        current = to_context_value(context.get(field_name))
    except AttributeError:
        return None
    if isinstance(current, Scalar) and current.value == "":
        return None
    if isinstance(current, Multi) and not current.values:
        return None
    return current


def evaluate(condition: Condition, context: Mapping[str, Any]) -> bool:
    """Evaluate a single condition against a field -> value snapshot.

    An unconfigured condition (empty field or value) never vetoes. A missing
    or empty context value fails every operator, ``not_equals`` included.
    Unknown operators pass so that rules written by newer clients do not
    block older readers.
    """

    if not condition.field or not condition.value:
        return True

    current = _lookup(context, condition.field)
    if current is None:
        return False

    expected = condition.value
    operator = condition.operator
    if isinstance(current, Multi):
        if operator == EQUALS:
            return expected in current.values
        if operator == NOT_EQUALS:
            return expected not in current.values
        if operator == CONTAINS:
            needle = expected.lower()
            return any(needle in item.lower() for item in current.values)
        return True

    if operator == EQUALS:
        return current.value == expected
    if operator == NOT_EQUALS:
        return current.value != expected
    if operator == CONTAINS:
        return expected.lower() in current.value.lower()
    return True


def evaluate_group(group: ConditionGroup, context: Mapping[str, Any]) -> bool:
    """AND the ``all`` list, then OR the ``any`` list. Empty lists pass."""

    if not all(evaluate(condition, context) for condition in group.all_conditions):
        return False
    if not group.any_conditions:
        return True
    return any(evaluate(condition, context) for condition in group.any_conditions)


def infer_event(
    conditions_all: Iterable[Condition],
    conditions_any: Iterable[Condition] = (),
) -> str:
    """Derive the lifecycle event a trigger listens to from its conditions."""

    for condition in list(conditions_all) + list(conditions_any):
        if condition.field == TICKET_EVENT_FIELD:
            return _EVENT_BY_VALUE.get(condition.value, TICKET_UPDATED)
    return TICKET_UPDATED


def ticket_event_values(event: str) -> List[str]:
    """Context value of ``ticket_event`` for a lifecycle event.

    Carries ``any`` alongside the concrete moment so a condition asking for
    "created or updated" matches both.
    """

    for value, event_id in _EVENT_BY_VALUE.items():
        if event_id == event and value != "any":
            return [value, "any"]
    return ["any"]
