from datetime import timedelta

from django.contrib.auth import get_user_model
from django.utils import timezone

import pytest

from tracking import monitoring

# Classroom used throughout the suite.
CLASSROOM_LATITUDE = 37.4607
CLASSROOM_LONGITUDE = 126.9524


@pytest.fixture(scope="session", autouse=True)
def close_database_connections():
    """Ensure all database connections are properly closed after tests.

    This fixture runs at the end of the test session to prevent the
    'database is being accessed by other users' error during teardown.
    """
    yield
    from django.db import connections

    for conn in connections.all():
        conn.close()


@pytest.fixture(autouse=True)
def fresh_metrics():
    monitoring.reset_for_tests()
    yield


@pytest.fixture
def professor(db):
    return get_user_model().objects.create_user(username="prof", password="pw-prof-123")


@pytest.fixture
def student(db):
    return get_user_model().objects.create_user(username="student", password="pw-student-123")


@pytest.fixture
def course(db, professor):
    from attendance.models import Course

    return Course.objects.create(
        name="Distributed Systems",
        code="CS401",
        professor=professor,
        location="Engineering Hall 301",
        location_latitude=CLASSROOM_LATITUDE,
        location_longitude=CLASSROOM_LONGITUDE,
        location_radius=100.0,
    )


@pytest.fixture
def session(db, course):
    from attendance.models import ClassSession

    return ClassSession.objects.create(course=course, created_at=timezone.now() - timedelta(minutes=10))


@pytest.fixture
def record(db, session, student):
    from attendance.models import AttendanceRecord

    return AttendanceRecord.objects.create(
        session=session,
        student=student,
        status=AttendanceRecord.Status.PRESENT,
        check_in_time=session.created_at + timedelta(minutes=1),
        location_verified=True,
    )
