"""
Admin site configuration for the attendance app.

Location logs are exposed read-only: they are an audit trail and must not be
edited after the fact.
"""

from django.contrib import admin

from .models import AttendanceRecord, ClassSession, Course, LocationLog


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "professor", "location", "location_radius")
    search_fields = ("code", "name", "location")


@admin.register(ClassSession)
class ClassSessionAdmin(admin.ModelAdmin):
    """Admin configuration for class sessions."""

    list_display = ("id", "course", "status", "created_at", "updated_at")
    list_filter = ("status",)
    search_fields = ("course__code", "course__name")


@admin.register(AttendanceRecord)
class AttendanceRecordAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "session",
        "student",
        "status",
        "check_in_time",
        "check_out_time",
        "location_verified",
        "last_heartbeat_at",
    )
    list_filter = ("status", "location_verified")
    search_fields = ("student__username",)


@admin.register(LocationLog)
class LocationLogAdmin(admin.ModelAdmin):
    """Read-only view over the location audit trail."""

    list_display = (
        "created_at",
        "attendance",
        "is_valid",
        "accuracy",
        "tracking_mode",
        "environment",
        "confidence",
    )
    list_filter = ("is_valid", "tracking_mode", "environment")
    readonly_fields = [field.name for field in LocationLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
