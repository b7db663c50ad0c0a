"""Initial schema for courses, sessions, attendance records and location logs."""

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Course",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("name", models.CharField(help_text="Course title shown to students.", max_length=200)),
                (
                    "code",
                    models.CharField(blank=True, help_text="Catalogue code, e.g. CS101.", max_length=50),
                ),
                (
                    "location",
                    models.CharField(
                        blank=True,
                        help_text="Display name of the classroom (e.g. building and room).",
                        max_length=255,
                    ),
                ),
                ("location_latitude", models.FloatField(blank=True, null=True)),
                ("location_longitude", models.FloatField(blank=True, null=True)),
                (
                    "location_radius",
                    models.FloatField(
                        blank=True,
                        help_text="Allowed radius in metres; defaults to 100 m when coordinates are set.",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "professor",
                    models.ForeignKey(
                        blank=True,
                        help_text="Professor allowed to end this course's sessions.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="taught_courses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="ClassSession",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("scheduled", "Scheduled"), ("active", "Active"), ("ended", "Ended")],
                        db_index=True,
                        default="active",
                        help_text="'ended' is terminal: attendance is frozen once reached.",
                        max_length=16,
                    ),
                ),
                (
                    "classroom_latitude",
                    models.FloatField(
                        blank=True,
                        help_text="Session-specific classroom latitude; overrides the course location.",
                        null=True,
                    ),
                ),
                ("classroom_longitude", models.FloatField(blank=True, null=True)),
                ("classroom_radius", models.FloatField(blank=True, null=True)),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "course",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sessions",
                        to="attendance.course",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="attendance_session_due_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AttendanceRecord",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("absent", "Absent"),
                            ("present", "Present"),
                            ("late", "Late"),
                            ("left_early", "Left early"),
                        ],
                        db_index=True,
                        default="absent",
                        max_length=16,
                    ),
                ),
                ("check_in_time", models.DateTimeField(blank=True, null=True)),
                ("check_out_time", models.DateTimeField(blank=True, null=True)),
                (
                    "location_verified",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the check-in location passed the geofence.",
                    ),
                ),
                (
                    "last_heartbeat_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the most recent heartbeat for this record was accepted.",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "session",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="attendance_records",
                        to="attendance.classsession",
                    ),
                ),
                (
                    "student",
                    models.ForeignKey(
                        help_text="The student this attendance record belongs to.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="attendance_records",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["session", "status"], name="attendance_rec_sess_stat_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("session", "student"),
                        name="attendance_record_unique_student",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LocationLog",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("latitude", models.FloatField()),
                ("longitude", models.FloatField()),
                ("accuracy", models.FloatField(help_text="Reported GPS accuracy in metres.")),
                (
                    "timestamp",
                    models.DateTimeField(help_text="Client-side time the position was captured."),
                ),
                (
                    "is_valid",
                    models.BooleanField(help_text="Whether the position was inside the geofence."),
                ),
                (
                    "tracking_mode",
                    models.CharField(
                        blank=True,
                        choices=[("gps-only", "gps-only"), ("pdr-only", "pdr-only"), ("fusion", "fusion")],
                        max_length=16,
                    ),
                ),
                (
                    "environment",
                    models.CharField(
                        blank=True,
                        choices=[("outdoor", "outdoor"), ("indoor", "indoor"), ("unknown", "unknown")],
                        max_length=16,
                    ),
                ),
                ("confidence", models.FloatField(blank=True, null=True)),
                ("gps_weight", models.FloatField(blank=True, null=True)),
                ("pdr_weight", models.FloatField(blank=True, null=True)),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                (
                    "attendance",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="location_logs",
                        to="attendance.attendancerecord",
                    ),
                ),
            ],
            options={
                "ordering": ("-created_at", "-id"),
                "indexes": [
                    models.Index(fields=["attendance", "created_at"], name="attendance_log_recent_idx"),
                ],
            },
        ),
    ]
