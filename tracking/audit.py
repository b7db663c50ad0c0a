"""Persistence of the location audit trail.

Writing a log row must never block a heartbeat verdict. When the insert
fails the heartbeat carries on without an audit entry; the failure is logged
and counted.
"""

from __future__ import annotations

import logging
from datetime import datetime

from django.db import DatabaseError, transaction

from attendance.models import LocationLog

from . import monitoring

logger = logging.getLogger(__name__)


def record_location_log(
    *,
    attendance_id: int,
    latitude: float,
    longitude: float,
    accuracy: float,
    timestamp: datetime,
    is_valid: bool,
    tracking_mode: str | None = None,
    environment: str | None = None,
    confidence: float | None = None,
    gps_weight: float | None = None,
    pdr_weight: float | None = None,
) -> bool:
    """Append one audit row; returns ``False`` when it could not be written."""

    try:
        with transaction.atomic():
            LocationLog.objects.create(
                attendance_id=attendance_id,
                latitude=latitude,
                longitude=longitude,
                accuracy=accuracy,
                timestamp=timestamp,
                is_valid=bool(is_valid),
                tracking_mode=tracking_mode or "",
                environment=environment or "",
                confidence=confidence,
                gps_weight=gps_weight,
                pdr_weight=pdr_weight,
            )
    except DatabaseError:
        logger.warning(
            "Unable to persist location log for attendance %s; continuing without audit trail",
            attendance_id,
            exc_info=True,
        )
        monitoring.record_audit_write_failure()
        return False
    return True


__all__ = ["record_location_log"]
