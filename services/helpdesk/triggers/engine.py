"""Trigger matching and action application.

Triggers arrive either as stored records (JSON text in ``conditions`` and
``actions``) or as already decoded ``TriggerRule`` objects. Matching is pure:
it takes the incoming lifecycle event and a context snapshot and returns the
triggers to run in execution order. Actions are folded into a plain patch
dict that the caller commits in a single write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from tickets.models import Ticket

from .rules import (
    OPERATORS,
    TICKET_ANY,
    Action,
    ConditionGroup,
    RuleFormatError,
    evaluate_group,
    parse_actions,
    parse_conditions,
)

logger = logging.getLogger(__name__)

ASSIGN_QUEUE = "assign_queue"
ASSIGN_RESOLVER = "assign_resolver"
SET_PRIORITY = "set_priority"
SET_STATUS = "set_status"

ACTION_TYPES = (ASSIGN_QUEUE, ASSIGN_RESOLVER, SET_PRIORITY, SET_STATUS)

Patch = Dict[str, Any]


@dataclass(frozen=True)
class TriggerRule:
    """A trigger with its conditions and actions decoded."""

    id: int
    name: str
    event: str
    conditions: ConditionGroup = field(default_factory=ConditionGroup)
    actions: Tuple[Action, ...] = ()
    active: bool = True

    @classmethod
    def from_record(cls, record: Any) -> "TriggerRule":
        """Decode a stored trigger; raises ``RuleFormatError`` on corrupt blobs."""

        return cls(
            id=record.id,
            name=record.name,
            event=record.event,
            conditions=parse_conditions(record.conditions),
            actions=parse_actions(record.actions),
            active=bool(record.active),
        )

    def unknown_operators(self) -> List[str]:
        conditions = self.conditions.all_conditions + self.conditions.any_conditions
        return sorted({item.operator for item in conditions if item.operator not in OPERATORS})


def materialize(records: Iterable[Any]) -> List[TriggerRule]:
    """Decode stored triggers, skipping the ones whose blobs do not parse."""

    rules = []
    for record in records:
        if isinstance(record, TriggerRule):
            rules.append(record)
            continue
        try:
            rule = TriggerRule.from_record(record)
        except RuleFormatError as exc:
            logger.warning(
                "Skipping trigger %s (%s): %s",
                getattr(record, "id", "?"),
                getattr(record, "name", ""),
                exc,
            )
            continue
        unknown = rule.unknown_operators()
        if unknown:
            logger.warning(
                "Trigger %s (%s) uses unknown operators %s, which always match",
                rule.id,
                rule.name,
                ", ".join(unknown),
            )
        rules.append(rule)
    return rules


def select_matching_triggers(
    event: str,
    triggers: Iterable[Any],
    context: Mapping[str, Any],
) -> List[TriggerRule]:
    """Return the active triggers that fire for ``event``, ordered by id.

    A trigger fires when it listens to ``event`` (or to any event) and its
    condition group holds for ``context``. Later triggers in the result win
    when several set the same field.
    """

    matched = []
    for rule in sorted(materialize(triggers), key=lambda item: item.id):
        if not rule.active:
            continue
        if rule.event not in (event, TICKET_ANY):
            continue
        if evaluate_group(rule.conditions, context):
            logger.debug("Trigger %s (%s) matched %s", rule.id, rule.name, event)
            matched.append(rule)
        else:
            logger.debug("Trigger %s (%s) did not match %s", rule.id, rule.name, event)
    return matched


def _parse_id(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except (AttributeError, ValueError):
        return None


def _assign_queue(value: str, patch: Patch) -> bool:
    queue_id = _parse_id(value)
    if queue_id is None:
        return False
    patch["queue_id"] = queue_id
    return True


def _assign_resolver(value: str, patch: Patch) -> bool:
    assignee_id = _parse_id(value)
    if assignee_id is None:
        return False
    # Same pair of fields the manual assign flow writes.
    patch["assignee_id"] = assignee_id
    patch["status"] = Ticket.IN_PROGRESS
    return True


def _set_priority(value: str, patch: Patch) -> bool:
    patch["priority"] = value
    return True


def _set_status(value: str, patch: Patch) -> bool:
    patch["status"] = value
    return True


ACTION_HANDLERS: Dict[str, Callable[[str, Patch], bool]] = {
    ASSIGN_QUEUE: _assign_queue,
    ASSIGN_RESOLVER: _assign_resolver,
    SET_PRIORITY: _set_priority,
    SET_STATUS: _set_status,
}


def apply_actions(actions: Iterable[Action], patch: Optional[Patch] = None) -> Patch:
    """Fold ``actions`` in order into a copy of ``patch``.

    Actions with an unknown type or an unusable value are skipped.
    """

    result: Patch = dict(patch or {})
    for action in actions:
        handler = ACTION_HANDLERS.get(action.type)
        if handler is None:
            logger.warning("Skipping unknown action type %r", action.type)
            continue
        if not handler(action.value, result):
            logger.warning("Skipping %s action with invalid value %r", action.type, action.value)
    return result


def fold_actions(rules: Iterable[TriggerRule]) -> Patch:
    """Combine the actions of every matched trigger into one patch."""

    patch: Patch = {}
    for rule in rules:
        patch = apply_actions(rule.actions, patch)
    return patch
