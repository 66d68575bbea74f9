"""Show/hide evaluation for form fields driven by the current answers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from triggers.rules import EQUALS, Condition, ConditionGroup, evaluate_group

from .models import FormField

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisibilityRule:
    source_field_id: str
    operator: str = EQUALS
    value: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VisibilityRule":
        source = data.get("source_field_id", data.get("sourceFieldId"))
        value = data.get("value")
        return cls(
            source_field_id="" if source is None else str(source),
            operator=str(data.get("operator") or EQUALS),
            value="" if value is None else str(value),
        )

    def as_condition(self) -> Condition:
        return Condition(field=self.source_field_id, operator=self.operator, value=self.value)


def parse_visibility_rules(raw: Any) -> Tuple[VisibilityRule, ...]:
    """Decode stored rules, dropping entries that are not objects."""

    if not raw:
        return ()
    if not isinstance(raw, (list, tuple)):
        logger.warning("Ignoring visibility rules that are not a list: %r", raw)
        return ()
    rules = []
    for item in raw:
        if not isinstance(item, Mapping):
            logger.warning("Ignoring malformed visibility rule: %r", item)
            continue
        rules.append(VisibilityRule.from_dict(item))
    return tuple(rules)


def is_visible(field: Any, form_values: Mapping[str, Any]) -> bool:
    """Whether ``field`` should be shown for the given answers.

    Only the field's own rules are considered; see ``visible_field_names``
    for section nesting.
    """

    rules = parse_visibility_rules(getattr(field, "visibility_rules", None))
    group = ConditionGroup(all_conditions=tuple(rule.as_condition() for rule in rules))
    return evaluate_group(group, form_values)


def visible_field_names(fields: Iterable[Any], form_values: Mapping[str, Any]) -> Set[str]:
    """Names of every field that is visible, honouring enclosing sections."""

    by_name = {field.name: field for field in fields}
    resolved: Dict[str, bool] = {}
    resolving: Set[str] = set()

    def _resolve(name: str) -> bool:
        if name in resolved:
            return resolved[name]
        field = by_name[name]
        if name in resolving:
            logger.warning("Section cycle detected at form field %s", name)
            return False
        resolving.add(name)
        visible = is_visible(field, form_values)
        parent = getattr(field, "section", "") or ""
        if visible and parent:
            visible = _resolve(parent) if parent in by_name else True
        resolving.discard(name)
        resolved[name] = visible
        return visible

    return {name for name in by_name if _resolve(name)}


def filter_submission(fields: Iterable[Any], form_values: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop the answers of hidden fields before a ticket is created.

    Keys that do not belong to the form are kept untouched. The caller's
    ``form_values`` mapping is not modified.
    """

    fields = list(fields)
    known = {field.name for field in fields}
    visible = visible_field_names(fields, form_values)
    return {
        key: value
        for key, value in form_values.items()
        if key not in known or key in visible
    }


def _is_blank(value: Optional[Any]) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def missing_required(fields: Iterable[Any], form_values: Mapping[str, Any]) -> List[str]:
    """Required, visible fields without an answer, in form order."""

    fields = list(fields)
    visible = visible_field_names(fields, form_values)
    return [
        field.name
        for field in fields
        if field.required
        and field.field_type != FormField.SECTION
        and field.name in visible
        and _is_blank(form_values.get(field.name))
    ]
