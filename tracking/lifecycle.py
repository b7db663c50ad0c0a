"""
Session lifecycle: lazy auto-end of overdue sessions and attendance finalization.

Sessions are not ended by a timer. Any code path that is about to trust a
session's status (a heartbeat, a status read, the optional sweep) asks the
manager first, and the manager ends the session if it has run past its
window. Ending is a conditional update so that two concurrent callers
finalize a session at most once.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from attendance.models import AttendanceRecord, ClassSession

from . import monitoring

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoEndSchedule:
    auto_end_at: Optional[datetime]
    is_overdue: bool


@dataclass(frozen=True)
class AttendanceSummary:
    total: int
    present: int
    late: int
    absent: int
    left_early: int
    attendance_rate: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AutoEndResult:
    session: ClassSession
    auto_ended: bool
    auto_end_at: Optional[datetime]
    summary: Optional[AttendanceSummary] = None


def round_half_up(value: float) -> int:
    """Round ``value`` to the nearest integer, halves away from zero for non-negative input."""

    return int(math.floor(value + 0.5))


def attendance_rate(present: int, late: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(100.0 * (present + late) / total)


class SessionLifecycleManager:
    """Decide when sessions end and freeze their attendance when they do."""

    def __init__(self, auto_end_after: Optional[timedelta] = None) -> None:
        self._auto_end_after = auto_end_after

    @property
    def auto_end_after(self) -> timedelta:
        if self._auto_end_after is not None:
            return self._auto_end_after
        hours = float(getattr(settings, "ATTENDANCE_SESSION_AUTO_END_HOURS", 2.0))
        return timedelta(hours=hours)

    def calculate_auto_end_at(
        self, created_at: Optional[datetime], now: Optional[datetime] = None
    ) -> AutoEndSchedule:
        if created_at is None:
            return AutoEndSchedule(auto_end_at=None, is_overdue=False)
        now = now or timezone.now()
        auto_end_at = created_at + self.auto_end_after
        return AutoEndSchedule(auto_end_at=auto_end_at, is_overdue=now >= auto_end_at)

    def auto_end_if_needed(
        self,
        session: ClassSession,
        now: Optional[datetime] = None,
        *,
        trigger: str = "lazy",
    ) -> AutoEndResult:
        """End ``session`` when it is overdue; a no-op for ended or in-window sessions."""

        now = now or timezone.now()
        schedule = self.calculate_auto_end_at(session.created_at, now)
        if session.is_ended or not schedule.is_overdue:
            return AutoEndResult(session=session, auto_ended=False, auto_end_at=schedule.auto_end_at)

        summary = self._end(session, now)
        if summary is not None:
            monitoring.record_session_auto_ended(trigger)
            logger.info(
                "Auto-ended session %s (%s) created at %s; attendance rate %s%%",
                session.pk,
                trigger,
                session.created_at.isoformat(),
                summary.attendance_rate,
            )
        return AutoEndResult(
            session=session,
            auto_ended=summary is not None,
            auto_end_at=schedule.auto_end_at,
            summary=summary,
        )

    def end_session(self, session: ClassSession, now: Optional[datetime] = None) -> AutoEndResult:
        """End ``session`` immediately, e.g. at the professor's request."""

        now = now or timezone.now()
        schedule = self.calculate_auto_end_at(session.created_at, now)
        summary = self._end(session, now)
        if summary is not None:
            logger.info("Session %s ended manually", session.pk)
        return AutoEndResult(
            session=session,
            auto_ended=False,
            auto_end_at=schedule.auto_end_at,
            summary=summary,
        )

    def end_overdue_sessions(self, now: Optional[datetime] = None) -> List[AutoEndResult]:
        """Sweep every open session past its window; returns the sessions ended by this call."""

        now = now or timezone.now()
        cutoff = now - self.auto_end_after
        ended: List[AutoEndResult] = []
        for session in ClassSession.objects.open().created_before(cutoff).order_by("created_at"):
            result = self.auto_end_if_needed(session, now, trigger="sweep")
            if result.auto_ended:
                ended.append(result)
        return ended

    def finalize_attendance(self, session: ClassSession, now: datetime) -> AttendanceSummary:
        """Stamp a check-out time on everyone still present and summarise the session."""

        Status = AttendanceRecord.Status
        counts = AttendanceRecord.objects.filter(session_id=session.pk).aggregate(
            total=Count("id"),
            present=Count("id", filter=Q(status=Status.PRESENT)),
            late=Count("id", filter=Q(status=Status.LATE)),
            absent=Count("id", filter=Q(status=Status.ABSENT)),
            left_early=Count("id", filter=Q(status=Status.LEFT_EARLY)),
        )
        AttendanceRecord.objects.filter(session_id=session.pk, status=Status.PRESENT).update(
            check_out_time=now, updated_at=now
        )
        return AttendanceSummary(
            total=counts["total"],
            present=counts["present"],
            late=counts["late"],
            absent=counts["absent"],
            left_early=counts["left_early"],
            attendance_rate=attendance_rate(counts["present"], counts["late"], counts["total"]),
        )

    def _end(self, session: ClassSession, now: datetime) -> Optional[AttendanceSummary]:
        summary = None
        with transaction.atomic():
            updated = (
                ClassSession.objects.filter(pk=session.pk)
                .exclude(status=ClassSession.Status.ENDED)
                .update(status=ClassSession.Status.ENDED, updated_at=now)
            )
            if updated:
                summary = self.finalize_attendance(session, now)
        session.refresh_from_db(fields=["status", "updated_at"])
        return summary


def summarize_session(session: ClassSession) -> AttendanceSummary:
    """Read-only summary of a session's attendance, without stamping anything."""

    Status = AttendanceRecord.Status
    records = AttendanceRecord.objects.filter(session_id=session.pk)
    counts = {status: 0 for status in Status.values}
    for row in records.values("status").annotate(n=Count("id")):
        counts[row["status"]] = row["n"]
    total = sum(counts.values())
    return AttendanceSummary(
        total=total,
        present=counts[Status.PRESENT],
        late=counts[Status.LATE],
        absent=counts[Status.ABSENT],
        left_early=counts[Status.LEFT_EARLY],
        attendance_rate=attendance_rate(counts[Status.PRESENT], counts[Status.LATE], total),
    )


__all__ = [
    "AttendanceSummary",
    "AutoEndResult",
    "AutoEndSchedule",
    "SessionLifecycleManager",
    "attendance_rate",
    "round_half_up",
    "summarize_session",
]
