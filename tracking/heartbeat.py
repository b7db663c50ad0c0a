"""
Server-side processing of attendance heartbeats.

A heartbeat is a periodic position report for a student who has checked in.
Each one is resolved against the student's attendance record, gated on GPS
accuracy, evaluated against the classroom geofence, written to the location
audit trail and, after a sustained run of out-of-zone readings, moves the
record from ``present`` to ``left_early``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from attendance.models import AttendanceRecord, ClassSession, LocationLog

from . import monitoring
from .audit import record_location_log
from .exceptions import ConfigurationError, HeartbeatError, RecordNotFound, SessionNotFound
from .geofence import GeofenceResult, GeofenceSpec, evaluate_location, resolve_geofence
from .lifecycle import SessionLifecycleManager

logger = logging.getLogger(__name__)


def session_geofence(session: ClassSession) -> GeofenceSpec:
    """Return the geofence that applies to ``session`` (session override before course default)."""

    geofence = resolve_geofence(session.geofence_override(), session.course.default_geofence())
    if geofence is None or not geofence.is_well_formed:
        logger.error("Session %s has no usable classroom location configured", session.pk)
        raise ConfigurationError("Classroom location is not configured for this session.")
    return geofence


@dataclass(frozen=True)
class HeartbeatRequest:
    attendance_id: int
    session_id: int
    latitude: float
    longitude: float
    accuracy: float
    timestamp: datetime
    is_background: bool = False
    source: str = "foreground"
    tracking_mode: Optional[str] = None
    environment: Optional[str] = None
    confidence: Optional[float] = None
    gps_weight: Optional[float] = None
    pdr_weight: Optional[float] = None


@dataclass(frozen=True)
class HeartbeatVerdict:
    location_valid: Optional[bool] = None
    distance: Optional[float] = None
    allowed_radius: Optional[float] = None
    status_changed: bool = False
    session_ended: bool = False
    new_status: Optional[str] = None
    low_accuracy: bool = False
    auto_ended: bool = False
    tracking_stopped: bool = False
    consecutive_violations: int = 0
    message: str = ""

    @property
    def outcome(self) -> str:
        if self.session_ended:
            return "session_ended"
        if self.status_changed:
            return "left_early"
        if self.tracking_stopped:
            return "not_present"
        if self.low_accuracy:
            return "low_accuracy"
        return "valid" if self.location_valid else "invalid"


class HeartbeatProcessor:
    """Apply one heartbeat to an attendance record and report the verdict."""

    def __init__(self, lifecycle: Optional[SessionLifecycleManager] = None) -> None:
        self.lifecycle = lifecycle or SessionLifecycleManager()

    @property
    def accuracy_skip_threshold(self) -> float:
        return float(getattr(settings, "ATTENDANCE_ACCURACY_SKIP_THRESHOLD_METERS", 100.0))

    @property
    def violation_window(self) -> int:
        return int(getattr(settings, "ATTENDANCE_VIOLATION_WINDOW", 4))

    @property
    def violation_threshold(self) -> int:
        return int(getattr(settings, "ATTENDANCE_VIOLATION_THRESHOLD", 3))

    def process(self, student, request: HeartbeatRequest, now: Optional[datetime] = None) -> HeartbeatVerdict:
        started = time.perf_counter()
        try:
            verdict = self._process(student, request, now or timezone.now())
        except HeartbeatError as exc:
            monitoring.record_heartbeat(type(exc).__name__, time.perf_counter() - started)
            raise
        monitoring.record_heartbeat(verdict.outcome, time.perf_counter() - started)
        return verdict

    def _process(self, student, request: HeartbeatRequest, now: datetime) -> HeartbeatVerdict:
        record = self._resolve_record(student, request)
        session = record.session

        lifecycle = self.lifecycle.auto_end_if_needed(session, now, trigger="heartbeat")
        if session.is_ended:
            return HeartbeatVerdict(
                session_ended=True,
                auto_ended=lifecycle.auto_ended,
                tracking_stopped=True,
                new_status=record.status,
                message="The session has ended; location tracking is no longer required.",
            )

        if record.status != AttendanceRecord.Status.PRESENT:
            return HeartbeatVerdict(
                tracking_stopped=True,
                new_status=record.status,
                message="Attendance is not active for this record; tracking has stopped.",
            )

        geofence = session_geofence(session)

        if request.accuracy > self.accuracy_skip_threshold:
            self._touch(record, now)
            logger.debug(
                "Skipping geofence check for attendance %s: accuracy %.1f m exceeds %.1f m",
                record.pk,
                request.accuracy,
                self.accuracy_skip_threshold,
            )
            return HeartbeatVerdict(
                allowed_radius=geofence.radius_meters,
                low_accuracy=True,
                new_status=record.status,
                message="GPS accuracy too low; location was not evaluated.",
            )

        result = evaluate_location(request.latitude, request.longitude, request.accuracy, geofence)
        record_location_log(
            attendance_id=record.pk,
            latitude=request.latitude,
            longitude=request.longitude,
            accuracy=request.accuracy,
            timestamp=request.timestamp,
            is_valid=result.is_valid,
            tracking_mode=request.tracking_mode,
            environment=request.environment,
            confidence=request.confidence,
            gps_weight=request.gps_weight,
            pdr_weight=request.pdr_weight,
        )
        self._touch(record, now)

        if result.is_valid:
            return self._verdict(result, record.status, status_changed=False, violations=0)

        status_changed, violations = self._apply_violation_rule(record, now)
        new_status = AttendanceRecord.Status.LEFT_EARLY if status_changed else record.status
        return self._verdict(result, new_status, status_changed=status_changed, violations=violations)

    def _resolve_record(self, student, request: HeartbeatRequest) -> AttendanceRecord:
        record = (
            AttendanceRecord.objects.select_related("session", "session__course")
            .filter(pk=request.attendance_id, session_id=request.session_id, student=student)
            .first()
        )
        if record is not None:
            return record
        if not ClassSession.objects.filter(pk=request.session_id).exists():
            raise SessionNotFound("Session not found.")
        raise RecordNotFound("Attendance record not found.")

    def _touch(self, record: AttendanceRecord, now: datetime) -> None:
        AttendanceRecord.objects.filter(pk=record.pk).update(last_heartbeat_at=now)
        record.last_heartbeat_at = now

    def consecutive_violations(self, attendance_id: int) -> int:
        """Count the run of out-of-zone readings at the head of the recent accurate logs."""

        recent = LocationLog.objects.latest_for(attendance_id, self.violation_window).values_list(
            "accuracy", "is_valid"
        )
        streak = 0
        for accuracy, is_valid in recent:
            # Inaccurate rows are dropped before counting, so they neither break nor extend a run.
            if accuracy > self.accuracy_skip_threshold:
                continue
            if is_valid:
                break
            streak += 1
        return streak

    def _apply_violation_rule(self, record: AttendanceRecord, now: datetime) -> tuple[bool, int]:
        with transaction.atomic():
            locked = AttendanceRecord.objects.select_for_update().filter(pk=record.pk).first()
            violations = self.consecutive_violations(record.pk)
            if locked is None or locked.status != AttendanceRecord.Status.PRESENT:
                return False, violations
            if violations < self.violation_threshold:
                return False, violations
            updated = (
                AttendanceRecord.objects.filter(pk=record.pk, status=AttendanceRecord.Status.PRESENT)
                .exclude(session__status=ClassSession.Status.ENDED)
                .update(
                    status=AttendanceRecord.Status.LEFT_EARLY,
                    check_out_time=now,
                    updated_at=now,
                )
            )
        if updated:
            record.status = AttendanceRecord.Status.LEFT_EARLY
            record.check_out_time = now
            monitoring.record_left_early()
            logger.info(
                "Attendance %s marked left_early after %d consecutive out-of-zone readings",
                record.pk,
                violations,
            )
        return bool(updated), violations

    @staticmethod
    def _verdict(
        result: GeofenceResult, new_status: str, *, status_changed: bool, violations: int
    ) -> HeartbeatVerdict:
        if status_changed:
            message = "You have left the classroom area; attendance was marked as left early."
        elif result.is_valid:
            message = "Location verified."
        else:
            message = "You appear to be outside the classroom area."
        return HeartbeatVerdict(
            location_valid=result.is_valid,
            distance=result.effective_distance,
            allowed_radius=result.allowed_radius,
            status_changed=status_changed,
            new_status=new_status,
            tracking_stopped=status_changed,
            consecutive_violations=violations,
            message=message,
        )


__all__ = ["HeartbeatProcessor", "HeartbeatRequest", "HeartbeatVerdict", "session_geofence"]
