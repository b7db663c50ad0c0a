"""Heartbeat processing: accuracy gate, audit trail and sustained departure detection."""

from dataclasses import replace
from datetime import timedelta
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import override_settings
from django.utils import timezone

import pytest

from attendance.models import AttendanceRecord, ClassSession, LocationLog
from tracking import monitoring
from tracking.exceptions import ConfigurationError, RecordNotFound, SessionNotFound
from tracking.geo import Position, offset_position
from tracking.heartbeat import HeartbeatProcessor, HeartbeatRequest

pytestmark = pytest.mark.django_db

CENTER = Position(latitude=37.4607, longitude=126.9524, accuracy_meters=0.0, timestamp=0.0)


def heartbeat(record, *, north=0.0, accuracy=10.0, **extra):
    latitude, longitude = offset_position(CENTER, 0.0, north)
    return HeartbeatRequest(
        attendance_id=record.pk,
        session_id=record.session_id,
        latitude=latitude,
        longitude=longitude,
        accuracy=accuracy,
        timestamp=timezone.now(),
        **extra,
    )


def send(record, student, **kwargs):
    return HeartbeatProcessor().process(student, heartbeat(record, **kwargs))


def test_in_zone_heartbeat_is_logged_as_valid(record, student):
    verdict = send(record, student, north=20.0, tracking_mode="fusion", confidence=0.9)

    assert verdict.location_valid is True
    assert verdict.distance == pytest.approx(20.0, abs=1.0)
    assert verdict.allowed_radius == 100.0
    assert not verdict.status_changed
    assert not verdict.session_ended
    log = LocationLog.objects.get(attendance=record)
    assert log.is_valid
    assert log.tracking_mode == "fusion"
    assert log.confidence == 0.9
    record.refresh_from_db()
    assert record.last_heartbeat_at is not None
    assert monitoring.metric_value("attendance_heartbeats", {"outcome": "valid"}) == 1.0


def test_three_accurate_out_of_zone_readings_mark_left_early(record, student):
    first = send(record, student, north=300.0)
    second = send(record, student, north=300.0)
    assert not first.status_changed and not second.status_changed
    assert second.consecutive_violations == 2

    third = send(record, student, north=300.0)

    assert third.status_changed
    assert third.new_status == AttendanceRecord.Status.LEFT_EARLY
    assert third.tracking_stopped
    assert third.consecutive_violations == 3
    record.refresh_from_db()
    assert record.status == AttendanceRecord.Status.LEFT_EARLY
    assert record.check_out_time is not None
    assert monitoring.metric_value("attendance_left_early_transitions") == 1.0


def test_inaccurate_reading_is_neither_logged_nor_counted(record, student):
    send(record, student, north=300.0)
    skipped = send(record, student, north=300.0, accuracy=150.0)
    after = send(record, student, north=300.0)

    assert skipped.low_accuracy
    assert skipped.location_valid is None
    assert skipped.distance is None
    assert not after.status_changed
    assert LocationLog.objects.filter(attendance=record).count() == 2
    record.refresh_from_db()
    assert record.status == AttendanceRecord.Status.PRESENT


def test_accuracy_exactly_at_threshold_is_evaluated(record, student):
    verdict = send(record, student, accuracy=100.0)

    assert not verdict.low_accuracy
    assert verdict.location_valid


def test_valid_reading_breaks_the_streak(record, student):
    send(record, student, north=300.0)
    send(record, student, north=300.0)
    send(record, student, north=10.0)
    verdict = send(record, student, north=300.0)

    assert verdict.consecutive_violations == 1
    assert not verdict.status_changed


def test_streak_after_an_earlier_valid_reading_still_counts(record, student):
    send(record, student, north=10.0)
    for _ in range(2):
        send(record, student, north=300.0)
    verdict = send(record, student, north=300.0)

    assert verdict.status_changed


def test_legacy_inaccurate_log_rows_are_skipped_when_counting(record, student):
    now = timezone.now()
    for offset, (accuracy, is_valid) in enumerate([(20.0, False), (250.0, True), (20.0, False)]):
        LocationLog.objects.create(
            attendance=record,
            latitude=0.0,
            longitude=0.0,
            accuracy=accuracy,
            timestamp=now,
            is_valid=is_valid,
            created_at=now - timedelta(seconds=30 - offset),
        )

    assert HeartbeatProcessor().consecutive_violations(record.pk) == 2


def test_session_geofence_overrides_course_location(record, student):
    session = record.session
    latitude, longitude = offset_position(CENTER, 0.0, 500.0)
    session.classroom_latitude = latitude
    session.classroom_longitude = longitude
    session.classroom_radius = 30.0
    session.save()

    verdict = send(record, student, north=510.0)

    assert verdict.location_valid
    assert verdict.allowed_radius == 30.0


def test_missing_geofence_is_a_configuration_error(record, student):
    course = record.session.course
    course.location_latitude = None
    course.save()

    with pytest.raises(ConfigurationError) as excinfo:
        send(record, student)

    assert excinfo.value.status_code == 500
    assert monitoring.metric_value("attendance_heartbeats", {"outcome": "ConfigurationError"}) == 1.0


def test_other_students_record_is_not_found(record):
    intruder = get_user_model().objects.create_user(username="intruder", password="pw")

    with pytest.raises(RecordNotFound) as excinfo:
        send(record, intruder)

    assert excinfo.value.status_code == 404


def test_unknown_session_is_reported(record, student):
    request = replace(heartbeat(record), session_id=record.session_id + 999)

    with pytest.raises(SessionNotFound):
        HeartbeatProcessor().process(student, request)


def test_record_not_present_stops_tracking_without_error(record, student):
    record.status = AttendanceRecord.Status.LEFT_EARLY
    record.save()

    verdict = send(record, student, north=300.0)

    assert verdict.tracking_stopped
    assert not verdict.session_ended
    assert verdict.new_status == AttendanceRecord.Status.LEFT_EARLY
    assert not LocationLog.objects.exists()


def test_overdue_session_is_auto_ended_by_the_heartbeat(record, student):
    session = record.session
    ClassSession.objects.filter(pk=session.pk).update(created_at=timezone.now() - timedelta(hours=3))

    verdict = send(record, student, north=300.0)

    assert verdict.session_ended
    assert verdict.auto_ended
    assert not LocationLog.objects.exists()
    record.refresh_from_db()
    assert record.check_out_time is not None
    assert record.status == AttendanceRecord.Status.PRESENT

    again = send(record, student)
    assert again.session_ended
    assert not again.auto_ended


def test_record_cannot_leave_early_after_session_ended(record, student):
    send(record, student, north=300.0)
    send(record, student, north=300.0)
    LocationLog.objects.create(
        attendance=record,
        latitude=0.0,
        longitude=0.0,
        accuracy=10.0,
        timestamp=timezone.now(),
        is_valid=False,
    )
    ClassSession.objects.filter(pk=record.session_id).update(status=ClassSession.Status.ENDED)

    changed, violations = HeartbeatProcessor()._apply_violation_rule(record, timezone.now())

    assert not changed
    assert violations == 3
    record.refresh_from_db()
    assert record.status == AttendanceRecord.Status.PRESENT


def test_concurrent_deciders_transition_the_record_once(record):
    now = timezone.now()
    for offset in range(3):
        LocationLog.objects.create(
            attendance=record,
            latitude=0.0,
            longitude=0.0,
            accuracy=10.0,
            timestamp=now,
            is_valid=False,
            created_at=now - timedelta(seconds=10 - offset),
        )
    stale = AttendanceRecord.objects.get(pk=record.pk)
    processor = HeartbeatProcessor()

    outcomes = [processor._apply_violation_rule(copy, now) for copy in (record, stale)]

    assert [changed for changed, _ in outcomes].count(True) == 1
    assert all(violations == 3 for _, violations in outcomes)
    assert monitoring.metric_value("attendance_left_early_transitions") == 1.0
    stale.refresh_from_db()
    assert stale.status == AttendanceRecord.Status.LEFT_EARLY


def test_audit_write_failure_does_not_block_the_verdict(record, student):
    with mock.patch.object(LocationLog.objects, "create", side_effect=DatabaseError("disk full")):
        verdict = send(record, student, north=20.0)

    assert verdict.location_valid
    assert not LocationLog.objects.exists()
    assert monitoring.metric_value("attendance_location_log_write_failures") == 1.0


@override_settings(ATTENDANCE_VIOLATION_THRESHOLD=2, ATTENDANCE_ACCURACY_SKIP_THRESHOLD_METERS=50.0)
def test_policy_constants_come_from_settings(record, student):
    assert send(record, student, north=20.0, accuracy=60.0).low_accuracy
    send(record, student, north=300.0)
    assert send(record, student, north=300.0).status_changed
