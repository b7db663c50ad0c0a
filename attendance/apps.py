"""
This file contains the app configuration for the attendance app.

The attendance app owns the persisted state the location verification engine
reads and mutates: courses, class sessions, attendance records and the
location audit trail.
"""

from django.apps import AppConfig


class AttendanceConfig(AppConfig):
    """Configuration class for the attendance app."""

    name = "attendance"
    verbose_name = "Attendance"
