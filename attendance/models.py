"""
Database models for the attendance app.

Courses carry a default classroom geofence, class sessions may override it,
attendance records hold the per-student state machine driven by heartbeats,
and location logs form the append-only audit trail behind early-leave
detection.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from tracking.environment import Environment
from tracking.fusion import TrackingMode
from tracking.geofence import GeofenceSpec


def _default_radius() -> float:
    return float(getattr(settings, "ATTENDANCE_DEFAULT_GEOFENCE_RADIUS_METERS", 100.0))


class Course(models.Model):
    """A course whose classroom location is the default geofence for its sessions."""

    name = models.CharField(max_length=200, help_text="Course title shown to students.")
    code = models.CharField(max_length=50, blank=True, help_text="Catalogue code, e.g. CS101.")
    professor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="taught_courses",
        help_text="Professor allowed to end this course's sessions.",
    )
    location = models.CharField(
        max_length=255,
        blank=True,
        help_text="Display name of the classroom (e.g. building and room).",
    )
    location_latitude = models.FloatField(null=True, blank=True)
    location_longitude = models.FloatField(null=True, blank=True)
    location_radius = models.FloatField(
        null=True,
        blank=True,
        help_text="Allowed radius in metres; defaults to 100 m when coordinates are set.",
    )
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"{self.code} {self.name}".strip()

    def default_geofence(self) -> GeofenceSpec | None:
        """Return the course-level geofence, or ``None`` when no location is configured."""

        if self.location_latitude is None or self.location_longitude is None:
            return None
        radius = self.location_radius if self.location_radius is not None else _default_radius()
        return GeofenceSpec(
            center_latitude=float(self.location_latitude),
            center_longitude=float(self.location_longitude),
            radius_meters=float(radius),
            display_name=self.location or None,
        )


class ClassSessionQuerySet(models.QuerySet):
    def open(self):
        return self.exclude(status=ClassSession.Status.ENDED)

    def created_before(self, cutoff):
        return self.filter(created_at__lte=cutoff)


class ClassSession(models.Model):
    """A single meeting of a course during which attendance is tracked."""

    class Status(models.TextChoices):
        SCHEDULED = "scheduled", "Scheduled"
        ACTIVE = "active", "Active"
        ENDED = "ended", "Ended"

    course = models.ForeignKey(
        Course,
        on_delete=models.CASCADE,
        related_name="sessions",
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True,
        help_text="'ended' is terminal: attendance is frozen once reached.",
    )
    classroom_latitude = models.FloatField(
        null=True,
        blank=True,
        help_text="Session-specific classroom latitude; overrides the course location.",
    )
    classroom_longitude = models.FloatField(null=True, blank=True)
    classroom_radius = models.FloatField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(default=timezone.now)

    objects = ClassSessionQuerySet.as_manager()

    class Meta:
        indexes = [
            models.Index(fields=["status", "created_at"], name="attendance_session_due_idx"),
        ]

    def __str__(self):
        return f"{self.course} @ {self.created_at:%Y-%m-%d %H:%M} ({self.status})"

    @property
    def is_ended(self) -> bool:
        return self.status == self.Status.ENDED

    def geofence_override(self) -> GeofenceSpec | None:
        """Return the session-level geofence set when the QR code was issued, if any."""

        if self.classroom_latitude is None or self.classroom_longitude is None:
            return None
        radius = self.classroom_radius if self.classroom_radius is not None else _default_radius()
        return GeofenceSpec(
            center_latitude=float(self.classroom_latitude),
            center_longitude=float(self.classroom_longitude),
            radius_meters=float(radius),
        )


class AttendanceRecord(models.Model):
    """
    Attendance of one student in one session.

    Created at check-in. Afterwards only the heartbeat processor (status and
    check-out time) and session finalization (check-out time for students
    still present) mutate it.
    """

    class Status(models.TextChoices):
        ABSENT = "absent", "Absent"
        PRESENT = "present", "Present"
        LATE = "late", "Late"
        LEFT_EARLY = "left_early", "Left early"

    session = models.ForeignKey(
        ClassSession,
        on_delete=models.CASCADE,
        related_name="attendance_records",
    )
    student = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="attendance_records",
        help_text="The student this attendance record belongs to.",
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.ABSENT,
        db_index=True,
    )
    check_in_time = models.DateTimeField(null=True, blank=True)
    check_out_time = models.DateTimeField(null=True, blank=True)
    location_verified = models.BooleanField(
        default=False,
        help_text="Whether the check-in location passed the geofence.",
    )
    last_heartbeat_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the most recent heartbeat for this record was accepted.",
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["session", "student"],
                name="attendance_record_unique_student",
            ),
        ]
        indexes = [
            models.Index(fields=["session", "status"], name="attendance_rec_sess_stat_idx"),
        ]

    def __str__(self):
        return f"{self.student} - session {self.session_id} - {self.status}"


class LocationLogQuerySet(models.QuerySet):
    def latest_for(self, attendance_id: int, limit: int):
        """Return the ``limit`` most recent log rows for an attendance record, newest first."""

        return self.filter(attendance_id=attendance_id).order_by("-created_at", "-id")[:limit]


class LocationLog(models.Model):
    """Append-only audit row written for every heartbeat accepted for evaluation."""

    attendance = models.ForeignKey(
        AttendanceRecord,
        on_delete=models.CASCADE,
        related_name="location_logs",
    )
    latitude = models.FloatField()
    longitude = models.FloatField()
    accuracy = models.FloatField(help_text="Reported GPS accuracy in metres.")
    timestamp = models.DateTimeField(help_text="Client-side time the position was captured.")
    is_valid = models.BooleanField(help_text="Whether the position was inside the geofence.")
    tracking_mode = models.CharField(
        max_length=16,
        blank=True,
        choices=[(mode.value, mode.value) for mode in TrackingMode],
    )
    environment = models.CharField(
        max_length=16,
        blank=True,
        choices=[(env.value, env.value) for env in Environment],
    )
    confidence = models.FloatField(null=True, blank=True)
    gps_weight = models.FloatField(null=True, blank=True)
    pdr_weight = models.FloatField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    objects = LocationLogQuerySet.as_manager()

    class Meta:
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=["attendance", "created_at"], name="attendance_log_recent_idx"),
        ]

    def __str__(self):
        verdict = "in zone" if self.is_valid else "out of zone"
        return f"attendance {self.attendance_id} @ {self.created_at:%H:%M:%S} ({verdict})"
