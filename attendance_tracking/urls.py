"""
Main URL configuration for the attendance tracking project.

Routes the versioned REST API served by the ``tracking`` app, the Django
admin used to manage courses and sessions, and the Prometheus endpoint.
"""

from django.contrib import admin
from django.urls import include, path

from tracking.api import views as tracking_views

urlpatterns = [
    # API V1
    path("api/v1/", include("tracking.api.urls")),
    path("monitoring/metrics/", tracking_views.monitoring_metrics, name="monitoring-metrics"),
    path("admin/", admin.site.urls),
]
