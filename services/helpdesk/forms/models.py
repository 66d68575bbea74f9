"""Database models for ticket forms."""
from __future__ import annotations

from django.db import models


class Form(models.Model):
    """A reusable ticket form definition."""

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    version = models.PositiveIntegerField(default=1)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self) -> str:
        return f"{self.name} v{self.version}"


class FormField(models.Model):
    """A field that belongs to a form.

    ``visibility_rules`` is a list of ``{"source_field_id", "operator",
    "value"}`` objects; every rule must hold for the field to be shown.
    ``section`` names the section field this field is nested under, if any.
    """

    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    CHECKBOX = "checkbox"
    SECTION = "section"

    FIELD_TYPES = [
        (TEXT, "Text"),
        (TEXTAREA, "Text Area"),
        (NUMBER, "Number"),
        (DATE, "Date"),
        (SELECT, "Select"),
        (CHECKBOX, "Checkbox"),
        (SECTION, "Section"),
    ]

    form = models.ForeignKey(Form, related_name="fields", on_delete=models.CASCADE)
    name = models.CharField(max_length=255)
    label = models.CharField(max_length=255)
    field_type = models.CharField(max_length=32, choices=FIELD_TYPES)
    required = models.BooleanField(default=False)
    order = models.PositiveIntegerField(default=0)
    section = models.CharField(max_length=255, blank=True)
    visibility_rules = models.JSONField(default=list, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["order", "id"]
        unique_together = ("form", "name")

    def __str__(self) -> str:
        return f"{self.label} ({self.field_type})"
