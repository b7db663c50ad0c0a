"""Capability-negotiated access to device motion sensors.

Devices expose motion data through different facilities: some offer separate
accelerometer, gyroscope and magnetometer readers, others a single combined
motion event stream that may omit rotation data. :class:`SensorManager`
hides that behind one interface. Backends are tried once, in priority
order, during :meth:`SensorManager.initialize`, and the first usable one is
kept for the lifetime of the manager.

Raw readings reach the manager through :meth:`SensorManager.dispatch`, which
the platform bridge calls for every event. A malformed event is dropped and
reported through ``on_error``; it never ends the stream.
"""

from __future__ import annotations

import abc
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from .exceptions import (
    SensorError,
    SensorErrorCode,
    SensorNotSupported,
    SensorPermissionDenied,
    SensorReadingFailed,
)

logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY_HZ = 60


class SensorState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    TRACKING = "tracking"
    PAUSED = "paused"
    ERROR = "error"


@dataclass(frozen=True)
class Acceleration:
    """Acceleration including gravity in m/s²; ``timestamp`` in seconds."""

    x: float
    y: float
    z: float
    timestamp: float

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)


@dataclass(frozen=True)
class RotationRate:
    """Angular velocity in degrees per second; ``alpha`` is about the vertical axis."""

    alpha: float
    beta: float
    gamma: float


@dataclass(frozen=True)
class MagneticField:
    x: float
    y: float
    z: float
    timestamp: float


@dataclass(frozen=True)
class SensorSample:
    """One tick of motion data. Fields a platform cannot provide are ``None``."""

    acceleration: Acceleration
    rotation_rate: Optional[RotationRate] = None
    magnetometer: Optional[MagneticField] = None

    @property
    def timestamp(self) -> float:
        return self.acceleration.timestamp


@dataclass(frozen=True)
class SensorFeatures:
    accelerometer: bool = False
    gyroscope: bool = False
    magnetometer: bool = False
    backend: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "accelerometer": self.accelerometer,
            "gyroscope": self.gyroscope,
            "magnetometer": self.magnetometer,
            "backend": self.backend,
        }


@dataclass(frozen=True)
class PlatformCapabilities:
    """What the host device reports it can provide."""

    accelerometer: bool = False
    gyroscope: bool = False
    magnetometer: bool = False
    motion_events: bool = False
    motion_events_need_permission: bool = False


PermissionPrompt = Callable[[], bool]
SampleCallback = Callable[[SensorSample], None]
ErrorCallback = Callable[[SensorError], None]


def _vector(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if not isinstance(value, Mapping):
        raise SensorReadingFailed(f"'{key}' is missing from the sensor event.")
    return value


def _finite(value: Any, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise SensorReadingFailed(f"{label} is not numeric: {value!r}") from exc
    if not math.isfinite(number):
        raise SensorReadingFailed(f"{label} is not finite: {value!r}")
    return number


def _timestamp_seconds(raw: Mapping[str, Any]) -> float:
    """Platform timestamps arrive in milliseconds."""

    return _finite(raw.get("timestamp"), "timestamp") / 1000.0


class SensorBackend(abc.ABC):
    """One way of reading motion data on a platform."""

    name: str = "abstract"

    def __init__(self, capabilities: PlatformCapabilities, frequency_hz: int = DEFAULT_FREQUENCY_HZ) -> None:
        self.capabilities = capabilities
        self.frequency_hz = frequency_hz

    @abc.abstractmethod
    def is_supported(self) -> bool:
        """Return ``True`` when the platform exposes what this backend needs."""

    def needs_permission(self) -> bool:
        return False

    @abc.abstractmethod
    def features(self) -> SensorFeatures:
        """Report which sensors this backend actually delivers."""

    @abc.abstractmethod
    def parse(self, raw: Mapping[str, Any]) -> SensorSample:
        """Convert one raw platform event into a :class:`SensorSample`."""


class MultiSensorBackend(SensorBackend):
    """Separate accelerometer, gyroscope and optional magnetometer readers.

    Events look like ``{"timestamp": ms, "accelerometer": {x, y, z},
    "gyroscope": {x, y, z}, "magnetometer": {x, y, z} | absent}`` with the
    gyroscope in rad/s.
    """

    name = "multi-sensor"

    def is_supported(self) -> bool:
        return self.capabilities.accelerometer and self.capabilities.gyroscope

    def features(self) -> SensorFeatures:
        return SensorFeatures(
            accelerometer=True,
            gyroscope=True,
            magnetometer=self.capabilities.magnetometer,
            backend=self.name,
        )

    def parse(self, raw: Mapping[str, Any]) -> SensorSample:
        timestamp = _timestamp_seconds(raw)
        accel = _vector(raw, "accelerometer")
        gyro = _vector(raw, "gyroscope")

        acceleration = Acceleration(
            x=_finite(accel.get("x"), "accelerometer.x"),
            y=_finite(accel.get("y"), "accelerometer.y"),
            z=_finite(accel.get("z"), "accelerometer.z"),
            timestamp=timestamp,
        )
        rotation = RotationRate(
            alpha=math.degrees(_finite(gyro.get("z"), "gyroscope.z")),
            beta=math.degrees(_finite(gyro.get("x"), "gyroscope.x")),
            gamma=math.degrees(_finite(gyro.get("y"), "gyroscope.y")),
        )

        magnetometer = None
        raw_magnetometer = raw.get("magnetometer")
        if self.capabilities.magnetometer and isinstance(raw_magnetometer, Mapping):
            magnetometer = MagneticField(
                x=_finite(raw_magnetometer.get("x"), "magnetometer.x"),
                y=_finite(raw_magnetometer.get("y"), "magnetometer.y"),
                z=_finite(raw_magnetometer.get("z"), "magnetometer.z"),
                timestamp=timestamp,
            )

        return SensorSample(acceleration=acceleration, rotation_rate=rotation, magnetometer=magnetometer)


class MotionEventBackend(SensorBackend):
    """A single combined motion event stream.

    Events look like ``{"timestamp": ms, "accelerationIncludingGravity":
    {x, y, z}, "rotationRate": {alpha, beta, gamma} | null}``. Rotation may be
    missing on some devices and there is never a magnetometer.
    """

    name = "motion-event"

    def is_supported(self) -> bool:
        return self.capabilities.motion_events

    def needs_permission(self) -> bool:
        return self.capabilities.motion_events_need_permission

    def features(self) -> SensorFeatures:
        return SensorFeatures(
            accelerometer=True,
            gyroscope=self.capabilities.gyroscope,
            magnetometer=False,
            backend=self.name,
        )

    def parse(self, raw: Mapping[str, Any]) -> SensorSample:
        accel = _vector(raw, "accelerationIncludingGravity")
        acceleration = Acceleration(
            x=_finite(accel.get("x"), "acceleration.x"),
            y=_finite(accel.get("y"), "acceleration.y"),
            z=_finite(accel.get("z"), "acceleration.z"),
            timestamp=_timestamp_seconds(raw),
        )

        rotation = None
        raw_rotation = raw.get("rotationRate")
        if isinstance(raw_rotation, Mapping) and raw_rotation.get("alpha") is not None:
            rotation = RotationRate(
                alpha=_finite(raw_rotation.get("alpha"), "rotationRate.alpha"),
                beta=_finite(raw_rotation.get("beta", 0.0), "rotationRate.beta"),
                gamma=_finite(raw_rotation.get("gamma", 0.0), "rotationRate.gamma"),
            )

        return SensorSample(acceleration=acceleration, rotation_rate=rotation, magnetometer=None)


class SensorManager:
    """Owns the sensor lifecycle for one tracking context.

    ``idle -> initializing -> ready -> tracking <-> paused``; any failure moves
    the manager to ``error``.
    """

    def __init__(
        self,
        backends: Sequence[SensorBackend],
        *,
        permission_prompt: Optional[PermissionPrompt] = None,
        frequency_hz: int = DEFAULT_FREQUENCY_HZ,
    ) -> None:
        self._backends = tuple(backends)
        self._permission_prompt = permission_prompt
        self.frequency_hz = frequency_hz
        self.state = SensorState.IDLE
        self.backend: Optional[SensorBackend] = None
        self._on_sample: Optional[SampleCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self.dropped_readings = 0

    @classmethod
    def for_platform(
        cls,
        capabilities: PlatformCapabilities,
        *,
        permission_prompt: Optional[PermissionPrompt] = None,
        frequency_hz: int = DEFAULT_FREQUENCY_HZ,
    ) -> "SensorManager":
        """Build a manager probing the richer multi-sensor API before motion events."""

        return cls(
            [
                MultiSensorBackend(capabilities, frequency_hz),
                MotionEventBackend(capabilities, frequency_hz),
            ],
            permission_prompt=permission_prompt,
            frequency_hz=frequency_hz,
        )

    def initialize(self) -> SensorFeatures:
        """Select the first usable backend, asking for permission where required."""

        if self.backend is not None and self.state not in (SensorState.IDLE, SensorState.ERROR):
            return self.backend.features()

        self.state = SensorState.INITIALIZING
        permission_refused = False

        for backend in self._backends:
            if not backend.is_supported():
                logger.debug("Sensor backend %s not supported on this platform", backend.name)
                continue
            if backend.needs_permission() and not self._request_permission():
                logger.info("Permission for sensor backend %s was declined", backend.name)
                permission_refused = True
                continue
            self.backend = backend
            self.state = SensorState.READY
            logger.info("Motion sensors initialised with %s backend", backend.name)
            return backend.features()

        self.state = SensorState.ERROR
        if permission_refused:
            raise SensorPermissionDenied("Motion sensor permission was denied.")
        raise SensorNotSupported("No motion sensor API is available on this device.")

    def _request_permission(self) -> bool:
        if self._permission_prompt is None:
            return False
        try:
            return bool(self._permission_prompt())
        except Exception:  # pragma: no cover - platform prompt failure
            logger.warning("Sensor permission prompt failed", exc_info=True)
            return False

    def start_tracking(self, on_sample: SampleCallback, on_error: Optional[ErrorCallback] = None) -> None:
        if self.state not in (SensorState.READY, SensorState.PAUSED):
            raise SensorError(
                f"Cannot start tracking while sensors are {self.state.value}.",
                SensorErrorCode.SENSOR_NOT_AVAILABLE,
            )
        self._on_sample = on_sample
        self._on_error = on_error
        self.state = SensorState.TRACKING

    def stop_tracking(self) -> None:
        if self.state in (SensorState.TRACKING, SensorState.PAUSED):
            self.state = SensorState.READY
        self._on_sample = None
        self._on_error = None

    def pause(self) -> None:
        if self.state == SensorState.TRACKING:
            self.state = SensorState.PAUSED

    def resume(
        self,
        on_sample: Optional[SampleCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        if self.state != SensorState.PAUSED:
            return
        if on_sample is not None:
            self._on_sample = on_sample
        if on_error is not None:
            self._on_error = on_error
        if self._on_sample is None:
            raise SensorError(
                "Cannot resume tracking without a sample callback.",
                SensorErrorCode.SENSOR_NOT_AVAILABLE,
            )
        self.state = SensorState.TRACKING

    def get_supported_features(self) -> SensorFeatures:
        if self.backend is None:
            return SensorFeatures()
        return self.backend.features()

    def dispatch(self, raw: Mapping[str, Any]) -> Optional[SensorSample]:
        """Feed one raw platform event; returns the parsed sample when it was delivered."""

        if self.state != SensorState.TRACKING or self.backend is None or self._on_sample is None:
            return None

        try:
            sample = self.backend.parse(raw)
        except SensorReadingFailed as exc:
            self._report_reading_failure(exc)
            return None
        except (AttributeError, TypeError) as exc:
            self._report_reading_failure(SensorReadingFailed(f"Malformed sensor event: {exc}"))
            return None

        self._on_sample(sample)
        return sample

    def _report_reading_failure(self, error: SensorReadingFailed) -> None:
        self.dropped_readings += 1
        if self._on_error is not None:
            self._on_error(error)
        else:
            logger.debug("Dropped sensor reading: %s", error)

    def destroy(self) -> None:
        self.stop_tracking()
        self.backend = None
        self.state = SensorState.IDLE


__all__ = [
    "Acceleration",
    "MagneticField",
    "MotionEventBackend",
    "MultiSensorBackend",
    "PlatformCapabilities",
    "RotationRate",
    "SensorBackend",
    "SensorFeatures",
    "SensorManager",
    "SensorSample",
    "SensorState",
]
