"""Run automation triggers against tickets on lifecycle events."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from tickets.models import ServiceQueue, Ticket

from .engine import Patch, TriggerRule, fold_actions, materialize, select_matching_triggers
from .models import Trigger
from .rules import TICKET_EVENT_FIELD, ticket_event_values

logger = logging.getLogger(__name__)

_STATUSES = {value for value, _ in Ticket.STATUS_CHOICES}
_PRIORITIES = {value for value, _ in Ticket.PRIORITY_CHOICES}


class PatchRejected(Exception):
    """No entry of the folded patch can be written."""


def build_ticket_context(ticket: Ticket, event: str) -> Dict[str, Any]:
    """Snapshot of a ticket's fields as seen by trigger conditions."""

    context: Dict[str, Any] = {}
    for key, value in (ticket.payload or {}).items():
        context[str(key)] = value
    context.update(
        {
            "status": ticket.status,
            "priority": ticket.priority,
            "queue": str(ticket.queue_id) if ticket.queue_id is not None else "",
            "form": str(ticket.form_id) if ticket.form_id is not None else "",
            TICKET_EVENT_FIELD: ticket_event_values(event),
        }
    )
    return context


def load_active_triggers() -> List[TriggerRule]:
    return materialize(Trigger.objects.filter(active=True).order_by("id"))


def _clean_patch(ticket: Ticket, patch: Patch) -> Patch:
    """Drop the entries of ``patch`` that point at invalid targets.

    Raises ``PatchRejected`` when nothing writable is left.
    """

    cleaned = dict(patch)
    queue_id = cleaned.get("queue_id")
    if queue_id is not None and not ServiceQueue.objects.filter(pk=queue_id).exists():
        logger.warning(
            "Ignoring trigger update for ticket %s: queue %s does not exist", ticket.pk, queue_id
        )
        del cleaned["queue_id"]
    for key, allowed in (("status", _STATUSES), ("priority", _PRIORITIES)):
        if key in cleaned and cleaned[key] not in allowed:
            logger.warning(
                "Ignoring trigger update for ticket %s: unknown %s %r", ticket.pk, key, cleaned[key]
            )
            del cleaned[key]
    if not cleaned:
        raise PatchRejected("no valid updates left")
    return cleaned


def commit_patch(ticket: Ticket, patch: Patch) -> Ticket:
    """Write the valid part of ``patch`` to the ticket row in one update and reload it."""

    with transaction.atomic():
        patch = _clean_patch(ticket, patch)
        Ticket.objects.filter(pk=ticket.pk).update(updated_at=timezone.now(), **patch)
    logger.info("Applied trigger updates to ticket %s: %s", ticket.pk, patch)
    ticket.refresh_from_db()
    return ticket


def preview_ticket_triggers(ticket: Ticket, event: str) -> Tuple[List[TriggerRule], Patch]:
    """Matched triggers and the patch they would apply, without writing."""

    context = build_ticket_context(ticket, event)
    matched = select_matching_triggers(event, load_active_triggers(), context)
    return matched, fold_actions(matched)


def run_ticket_triggers(ticket: Ticket, event: str) -> Ticket:
    """Apply every matching trigger to ``ticket`` for ``event``.

    Automation is best-effort: failures are logged and the ticket is returned
    as it was, so the create or update that raised the event still succeeds.
    """

    if not getattr(settings, "TRIGGERS_ENABLED", True):
        return ticket

    try:
        rules = load_active_triggers()
        if not rules:
            return ticket
        context = build_ticket_context(ticket, event)
        matched = select_matching_triggers(event, rules, context)
        logger.info(
            "Ticket %s %s: %d of %d triggers matched",
            ticket.pk,
            event,
            len(matched),
            len(rules),
        )
        patch = fold_actions(matched)
        if not patch:
            return ticket
        commit_patch(ticket, patch)
    except PatchRejected as exc:
        logger.warning("Trigger updates for ticket %s rejected: %s", ticket.pk, exc)
    except Exception:
        logger.exception("Trigger processing failed for ticket %s", ticket.pk)
    return ticket
