"""URL configuration for the helpdesk service."""
from django.urls import include, path

urlpatterns = [
    path("api/", include("tickets.urls")),
    path("api/", include("forms.urls")),
    path("api/", include("triggers.urls")),
]
