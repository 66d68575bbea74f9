# Generated manually for initial schema.
from __future__ import annotations

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Trigger",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                (
                    "event",
                    models.CharField(
                        choices=[
                            ("ticket.created", "Ticket created"),
                            ("ticket.updated", "Ticket updated"),
                            ("ticket.any", "Ticket created or updated"),
                        ],
                        default="ticket.updated",
                        editable=False,
                        max_length=32,
                    ),
                ),
                ("conditions", models.TextField(default='{"all":[],"any":[]}')),
                ("actions", models.TextField(default="[]")),
                ("active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["id"],
                "indexes": [models.Index(fields=["active", "event"], name="trigger_active_event_idx")],
            },
        ),
    ]
