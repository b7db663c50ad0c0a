"""
Check-in: the step that moves a student's attendance record to ``present``.

A check-in is accepted only while the session is active and only when the
reported position lies inside the classroom geofence. The reported GPS
accuracy never widens the fence, so a device claiming a huge error radius
cannot check in from far away. The record id returned here is what the
heartbeat client sends afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.utils import timezone

from attendance.models import AttendanceRecord, ClassSession

from . import monitoring
from .exceptions import HeartbeatError, LocationRejected, SessionEnded, SessionNotActive, SessionNotFound
from .geofence import GeofenceResult, evaluate_location
from .heartbeat import session_geofence
from .lifecycle import SessionLifecycleManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInRequest:
    session_id: int
    latitude: float
    longitude: float
    accuracy: float = 0.0


@dataclass(frozen=True)
class CheckInResult:
    record: AttendanceRecord
    created: bool
    location: GeofenceResult

    @property
    def message(self) -> str:
        return "Successfully checked in." if self.created else "Successfully checked in (updated)."


class CheckInService:
    """Verify a student's position against the session geofence and mark them present."""

    def __init__(self, lifecycle: Optional[SessionLifecycleManager] = None) -> None:
        self.lifecycle = lifecycle or SessionLifecycleManager()

    def check_in(self, student, request: CheckInRequest, now: Optional[datetime] = None) -> CheckInResult:
        try:
            result = self._check_in(student, request, now or timezone.now())
        except HeartbeatError as exc:
            monitoring.record_checkin(type(exc).__name__)
            raise
        monitoring.record_checkin("created" if result.created else "updated")
        return result

    def _check_in(self, student, request: CheckInRequest, now: datetime) -> CheckInResult:
        session = ClassSession.objects.select_related("course").filter(pk=request.session_id).first()
        if session is None:
            raise SessionNotFound("Session not found.")

        lifecycle = self.lifecycle.auto_end_if_needed(session, now, trigger="checkin")
        if session.is_ended:
            raise SessionEnded(
                "Session has already ended.",
                sessionEnded=True,
                autoEnded=lifecycle.auto_ended,
            )
        if session.status != ClassSession.Status.ACTIVE:
            raise SessionNotActive("Session is not active.")

        geofence = session_geofence(session)
        location = evaluate_location(request.latitude, request.longitude, request.accuracy, geofence)
        if not location.is_valid:
            logger.info(
                "Rejected check-in for session %s: %.0f m from the classroom (radius %.0f m, accuracy %.0f m)",
                session.pk,
                location.distance,
                location.allowed_radius,
                request.accuracy,
            )
            raise LocationRejected(
                "Location verification failed: you are outside the classroom area.",
                distance=int(round(location.distance)),
                allowedRadius=int(round(location.allowed_radius)),
                gpsAccuracy=int(round(request.accuracy)),
            )

        with transaction.atomic():
            record, created = AttendanceRecord.objects.select_for_update().get_or_create(
                session=session,
                student=student,
                defaults={
                    "status": AttendanceRecord.Status.PRESENT,
                    "check_in_time": now,
                    "location_verified": True,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            if not created:
                record.status = AttendanceRecord.Status.PRESENT
                record.check_in_time = now
                record.check_out_time = None
                record.location_verified = True
                record.updated_at = now
                record.save(
                    update_fields=["status", "check_in_time", "check_out_time", "location_verified", "updated_at"]
                )

        logger.info(
            "Attendance %s checked in for session %s (%s)",
            record.pk,
            session.pk,
            "new" if created else "updated",
        )
        return CheckInResult(record=record, created=created, location=location)


__all__ = ["CheckInRequest", "CheckInResult", "CheckInService"]
