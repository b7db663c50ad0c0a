"""
This file contains the app configuration for the tracking app.

The tracking app hosts the continuous location verification engine: geodesic
math, sensor access, dead reckoning, position fusion, geofence evaluation,
the heartbeat processor and session lifecycle management.
"""

from django.apps import AppConfig


class TrackingConfig(AppConfig):
    """Configuration class for the tracking app."""

    name = "tracking"
    verbose_name = "Location tracking"
