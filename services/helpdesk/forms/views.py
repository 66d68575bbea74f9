"""API views for ticket forms."""
from __future__ import annotations

from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.request import Request
from rest_framework.response import Response

from .models import Form
from .serializers import FormSerializer, VisibilityRequestSerializer
from .visibility import missing_required, visible_field_names


class FormViewSet(viewsets.ModelViewSet):
    queryset = Form.objects.prefetch_related("fields").all()
    serializer_class = FormSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "updated_at"]
    ordering = ["name"]

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        active = self.request.query_params.get("active")
        if active is not None:
            queryset = queryset.filter(is_active=active.lower() in {"1", "true", "yes"})
        return queryset

    @action(detail=True, methods=["post"], url_path="visibility")
    def visibility(self, request: Request, *args, **kwargs):  # type: ignore[override]
        """Report which fields are shown for the posted answers."""

        form = self.get_object()
        payload = VisibilityRequestSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        values = payload.validated_data["values"]
        fields = list(form.fields.all())
        visible = visible_field_names(fields, values)
        return Response(
            {
                "visible": [field.name for field in fields if field.name in visible],
                "missing_required": missing_required(fields, values),
            }
        )
