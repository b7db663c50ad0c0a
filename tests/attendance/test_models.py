from datetime import timedelta

from django.db import IntegrityError, transaction
from django.test import override_settings
from django.utils import timezone

import pytest

from attendance.models import AttendanceRecord, ClassSession, Course, LocationLog

pytestmark = pytest.mark.django_db


def test_course_geofence_uses_configured_radius(course):
    geofence = course.default_geofence()

    assert geofence.center_latitude == 37.4607
    assert geofence.radius_meters == 100.0
    assert geofence.display_name == "Engineering Hall 301"


@override_settings(ATTENDANCE_DEFAULT_GEOFENCE_RADIUS_METERS=75.0)
def test_course_without_radius_falls_back_to_default():
    course = Course.objects.create(name="Ethics", location_latitude=37.0, location_longitude=127.0)

    assert course.default_geofence().radius_meters == 75.0


def test_course_without_coordinates_has_no_geofence():
    assert Course.objects.create(name="Seminar", location_latitude=37.0).default_geofence() is None


def test_session_override_requires_both_coordinates(session):
    assert session.geofence_override() is None

    session.classroom_latitude = 37.5
    assert session.geofence_override() is None

    session.classroom_longitude = 127.1
    session.classroom_radius = 40.0
    override = session.geofence_override()
    assert (override.center_latitude, override.center_longitude, override.radius_meters) == (37.5, 127.1, 40.0)


def test_one_record_per_student_and_session(record):
    with pytest.raises(IntegrityError), transaction.atomic():
        AttendanceRecord.objects.create(session=record.session, student=record.student)


def test_open_sessions_exclude_ended(course):
    now = timezone.now()
    stale = ClassSession.objects.create(course=course, created_at=now - timedelta(hours=3))
    fresh = ClassSession.objects.create(course=course, created_at=now)
    ClassSession.objects.create(course=course, created_at=now - timedelta(hours=4), status=ClassSession.Status.ENDED)

    overdue = ClassSession.objects.open().created_before(now - timedelta(hours=2))

    assert list(overdue) == [stale]
    assert fresh in ClassSession.objects.open()


def test_latest_logs_are_newest_first_with_id_tiebreak(record):
    moment = timezone.now()
    rows = [
        LocationLog.objects.create(
            attendance=record,
            latitude=0.0,
            longitude=0.0,
            accuracy=10.0,
            timestamp=moment,
            is_valid=bool(index % 2),
            created_at=moment,
        )
        for index in range(3)
    ]
    older = LocationLog.objects.create(
        attendance=record,
        latitude=0.0,
        longitude=0.0,
        accuracy=10.0,
        timestamp=moment,
        is_valid=True,
        created_at=moment - timedelta(minutes=1),
    )

    latest = list(LocationLog.objects.latest_for(record.pk, 4))

    assert latest == [rows[2], rows[1], rows[0], older]
    assert list(LocationLog.objects.latest_for(record.pk, 2)) == [rows[2], rows[1]]
