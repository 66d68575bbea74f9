"""Database models for ticket automation triggers."""
from __future__ import annotations

from django.db import models

from .rules import EVENT_CHOICES, TICKET_UPDATED, RuleFormatError, infer_event, parse_conditions

EMPTY_CONDITIONS = '{"all":[],"any":[]}'


class Trigger(models.Model):
    """An automation rule applied to tickets on lifecycle events.

    ``conditions`` and ``actions`` are kept as the JSON text the builder
    posted. ``event`` is a projection of the conditions and is recomputed on
    every save.
    """

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    event = models.CharField(
        max_length=32,
        choices=EVENT_CHOICES,
        default=TICKET_UPDATED,
        editable=False,
    )
    conditions = models.TextField(default=EMPTY_CONDITIONS)
    actions = models.TextField(default="[]")
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        indexes = [models.Index(fields=["active", "event"], name="trigger_active_event_idx")]

    def __str__(self) -> str:
        return f"{self.name} ({self.event})"

    def derive_event(self) -> str:
        try:
            group = parse_conditions(self.conditions)
        except RuleFormatError:
            return TICKET_UPDATED
        return infer_event(group.all_conditions, group.any_conditions)

    def save(self, *args, **kwargs):  # type: ignore[override]
        self.event = self.derive_event()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "conditions" in update_fields:
            kwargs["update_fields"] = set(update_fields) | {"event"}
        super().save(*args, **kwargs)
