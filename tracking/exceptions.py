"""Exception types raised by the location tracking engine."""

from __future__ import annotations

from enum import Enum


class SensorErrorCode(str, Enum):
    NOT_SUPPORTED = "NOT_SUPPORTED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SENSOR_NOT_AVAILABLE = "SENSOR_NOT_AVAILABLE"
    READING_FAILED = "READING_FAILED"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"


class SensorError(Exception):
    """Base error for motion sensor access; ``code`` identifies the failure class."""

    default_code = SensorErrorCode.INITIALIZATION_FAILED

    def __init__(self, message: str, code: SensorErrorCode | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code


class SensorNotSupported(SensorError):
    """No sensor tier is usable on this device; callers fall back to GPS only."""

    default_code = SensorErrorCode.NOT_SUPPORTED


class SensorPermissionDenied(SensorError):
    """The user declined motion sensor access."""

    default_code = SensorErrorCode.PERMISSION_DENIED


class SensorReadingFailed(SensorError):
    """A single sensor event could not be parsed and was dropped."""

    default_code = SensorErrorCode.READING_FAILED


class HeartbeatError(Exception):
    """Base error for heartbeat and check-in processing.

    ``status_code`` maps onto the HTTP response and ``details`` are merged into
    its JSON body.
    """

    status_code = 400

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class RecordNotFound(HeartbeatError):
    status_code = 404


class SessionNotFound(HeartbeatError):
    status_code = 404


class ConfigurationError(HeartbeatError):
    """The session has no usable geofence; a setup defect rather than a transient error."""

    status_code = 500


class CheckInRejected(HeartbeatError):
    """A check-in that was understood but cannot be accepted."""


class SessionEnded(CheckInRejected):
    pass


class SessionNotActive(CheckInRejected):
    pass


class LocationRejected(CheckInRejected):
    """The reported position is outside the classroom geofence."""


__all__ = [
    "CheckInRejected",
    "ConfigurationError",
    "HeartbeatError",
    "LocationRejected",
    "RecordNotFound",
    "SensorError",
    "SensorErrorCode",
    "SensorNotSupported",
    "SensorPermissionDenied",
    "SensorReadingFailed",
    "SessionEnded",
    "SessionNotActive",
    "SessionNotFound",
]
