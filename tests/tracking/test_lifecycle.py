"""Session auto-end and attendance finalization."""

from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import override_settings
from django.utils import timezone

import pytest

from attendance.models import AttendanceRecord, ClassSession
from tracking import monitoring
from tracking.lifecycle import SessionLifecycleManager, attendance_rate, round_half_up, summarize_session

pytestmark = pytest.mark.django_db

Status = AttendanceRecord.Status


def _enrol(session, statuses):
    User = get_user_model()
    records = []
    for index, status in enumerate(statuses):
        user = User.objects.create_user(username=f"s{session.pk}-{index}", password="pw")
        records.append(AttendanceRecord.objects.create(session=session, student=user, status=status))
    return records


def test_auto_end_at_is_two_hours_after_creation():
    created = timezone.now() - timedelta(hours=1)
    manager = SessionLifecycleManager()

    schedule = manager.calculate_auto_end_at(created)

    assert schedule.auto_end_at == created + timedelta(hours=2)
    assert not schedule.is_overdue
    assert manager.calculate_auto_end_at(created, now=created + timedelta(hours=2)).is_overdue


def test_missing_creation_time_is_never_overdue():
    schedule = SessionLifecycleManager().calculate_auto_end_at(None)

    assert schedule.auto_end_at is None
    assert schedule.is_overdue is False


@override_settings(ATTENDANCE_SESSION_AUTO_END_HOURS=0.5)
def test_window_follows_settings():
    created = timezone.now()
    schedule = SessionLifecycleManager().calculate_auto_end_at(created)

    assert schedule.auto_end_at == created + timedelta(minutes=30)


def test_session_within_window_is_left_alone(session, record):
    result = SessionLifecycleManager().auto_end_if_needed(session)

    assert not result.auto_ended
    session.refresh_from_db()
    assert session.status == ClassSession.Status.ACTIVE


def test_overdue_session_is_ended_and_present_records_checked_out(course):
    session = ClassSession.objects.create(course=course, created_at=timezone.now() - timedelta(hours=3))
    present, late, left = _enrol(session, [Status.PRESENT, Status.LATE, Status.LEFT_EARLY])
    now = timezone.now()

    result = SessionLifecycleManager().auto_end_if_needed(session, now=now)

    assert result.auto_ended
    assert session.status == ClassSession.Status.ENDED
    assert session.updated_at == now
    present.refresh_from_db()
    late.refresh_from_db()
    left.refresh_from_db()
    assert present.check_out_time == now
    assert present.status == Status.PRESENT
    assert late.check_out_time is None
    assert left.check_out_time is None
    assert result.summary.as_dict() == {
        "total": 3,
        "present": 1,
        "late": 1,
        "absent": 0,
        "left_early": 1,
        "attendance_rate": 67,
    }
    assert monitoring.metric_value("attendance_sessions_auto_ended", {"trigger": "lazy"}) == 1.0


def test_ended_session_is_not_finalized_twice(course):
    session = ClassSession.objects.create(course=course, created_at=timezone.now() - timedelta(hours=3))
    (record,) = _enrol(session, [Status.PRESENT])
    manager = SessionLifecycleManager()
    first = manager.auto_end_if_needed(session)
    record.refresh_from_db()
    stamped = record.check_out_time

    stale = ClassSession.objects.get(pk=session.pk)
    stale.status = ClassSession.Status.ACTIVE  # a copy loaded before the first call committed
    second = manager.auto_end_if_needed(stale, now=timezone.now() + timedelta(minutes=5))

    assert first.auto_ended
    assert not second.auto_ended
    assert second.summary is None
    assert stale.status == ClassSession.Status.ENDED
    record.refresh_from_db()
    assert record.check_out_time == stamped


def test_empty_session_has_zero_rate(course):
    session = ClassSession.objects.create(course=course, created_at=timezone.now() - timedelta(hours=5))

    result = SessionLifecycleManager().auto_end_if_needed(session)

    assert result.summary.total == 0
    assert result.summary.attendance_rate == 0


def test_end_session_finalizes_immediately(session, record):
    result = SessionLifecycleManager().end_session(session)

    assert not result.auto_ended
    assert result.summary.present == 1
    assert result.summary.attendance_rate == 100
    record.refresh_from_db()
    assert record.check_out_time is not None
    assert session.is_ended


def test_end_overdue_sessions_sweeps_only_overdue_open_sessions(course):
    now = timezone.now()
    overdue = ClassSession.objects.create(course=course, created_at=now - timedelta(hours=4))
    fresh = ClassSession.objects.create(course=course, created_at=now - timedelta(minutes=30))
    already = ClassSession.objects.create(
        course=course, created_at=now - timedelta(hours=6), status=ClassSession.Status.ENDED
    )

    results = SessionLifecycleManager().end_overdue_sessions(now)

    assert [result.session.pk for result in results] == [overdue.pk]
    fresh.refresh_from_db()
    already.refresh_from_db()
    assert fresh.status == ClassSession.Status.ACTIVE
    assert already.updated_at != now
    assert monitoring.metric_value("attendance_sessions_auto_ended", {"trigger": "sweep"}) == 1.0


def test_summarize_session_reads_without_stamping(session):
    records = _enrol(session, [Status.PRESENT, Status.ABSENT, Status.ABSENT, Status.LATE])

    summary = summarize_session(session)

    assert (summary.total, summary.present, summary.absent, summary.late) == (4, 1, 2, 1)
    assert summary.attendance_rate == 50
    records[0].refresh_from_db()
    assert records[0].check_out_time is None


@pytest.mark.parametrize(
    "present,late,total,expected",
    [(1, 0, 8, 13), (1, 1, 3, 67), (1, 0, 3, 33), (0, 0, 0, 0), (1, 0, 200, 1), (5, 5, 10, 100)],
)
def test_attendance_rate_rounds_half_up(present, late, total, expected):
    assert attendance_rate(present, late, total) == expected


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(2.49) == 2
