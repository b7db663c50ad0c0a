"""Pedestrian dead reckoning: steps, heading and stride length from motion samples.

Displacement is expressed in a local east/north frame in metres. Heading is in
radians, measured counter-clockwise from east, wrapped to (-pi, pi].
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

import numpy as np

from .sensors import Acceleration, MagneticField, SensorSample

logger = logging.getLogger(__name__)

STANDARD_GRAVITY = 9.80665


def normalize_angle(angle: float) -> float:
    """Wrap ``angle`` into (-pi, pi]."""

    return math.atan2(math.sin(angle), math.cos(angle))


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


@dataclass(frozen=True)
class StepDetectorConfig:
    # Linear acceleration (gravity removed) a peak must exceed, in m/s².
    threshold: float = 1.5
    min_step_interval: float = 0.2
    # The signal must drop below this level between two steps.
    trough_level: float = 0.0
    adaptive_window: int = 50
    adaptive_min_samples: int = 20
    adaptive_sigma: float = 1.5


@dataclass(frozen=True)
class StepEvent:
    timestamp: float
    peak: float
    valley: float


class StepDetector:
    """Peak-then-trough step detector with a debounce interval and adaptive threshold."""

    def __init__(self, config: Optional[StepDetectorConfig] = None) -> None:
        self.config = config or StepDetectorConfig()
        self._history: Deque[float] = deque(maxlen=self.config.adaptive_window)
        self._previous: Optional[tuple[float, float]] = None
        self._before_previous: Optional[tuple[float, float]] = None
        self._last_step_at: Optional[float] = None
        self._armed = True
        self._valley = math.inf
        self.step_count = 0

    def current_threshold(self) -> float:
        if len(self._history) < self.config.adaptive_min_samples:
            return self.config.threshold
        values = np.fromiter(self._history, dtype=float)
        adaptive = float(values.mean() + self.config.adaptive_sigma * values.std())
        return max(self.config.threshold, adaptive)

    def update(self, acceleration: Acceleration) -> Optional[StepEvent]:
        """Consume one acceleration reading; return a :class:`StepEvent` when a step completes."""

        value = acceleration.magnitude - STANDARD_GRAVITY
        timestamp = acceleration.timestamp
        threshold = self.current_threshold()
        self._history.append(value)

        step: Optional[StepEvent] = None
        if self._previous is not None and self._before_previous is not None:
            peak_value, peak_time = self._previous
            is_peak = peak_value > self._before_previous[0] and peak_value > value
            if is_peak and peak_value > threshold and self._armed and self._debounced(peak_time):
                step = StepEvent(timestamp=peak_time, peak=peak_value, valley=self._valley)
                self._last_step_at = peak_time
                self._armed = False
                self._valley = math.inf
                self.step_count += 1

        # The current sample follows the peak just checked, so it may re-arm for the next one.
        if value < self.config.trough_level:
            self._armed = True
        self._valley = min(self._valley, value)

        self._before_previous = self._previous
        self._previous = (value, timestamp)
        return step

    def _debounced(self, timestamp: float) -> bool:
        if self._last_step_at is None:
            return True
        return timestamp - self._last_step_at >= self.config.min_step_interval

    def reset(self) -> None:
        self._history.clear()
        self._previous = None
        self._before_previous = None
        self._last_step_at = None
        self._armed = True
        self._valley = math.inf
        self.step_count = 0


class HeadingEstimator:
    """Gyroscope integration corrected by a complementary filter toward the magnetometer."""

    def __init__(
        self,
        initial_heading: float = 0.0,
        *,
        gyro_weight: float = 0.98,
        magnetometer_interval: float = 1.0,
    ) -> None:
        if not 0.0 <= gyro_weight <= 1.0:
            raise ValueError("gyro_weight must be between 0 and 1.")
        self.heading = normalize_angle(initial_heading)
        self.gyro_weight = gyro_weight
        self.magnetometer_interval = magnetometer_interval
        self._last_timestamp: Optional[float] = None
        self._last_calibration: Optional[float] = None

    def update(self, sample: SensorSample) -> float:
        timestamp = sample.timestamp
        if sample.rotation_rate is not None and self._last_timestamp is not None:
            elapsed = timestamp - self._last_timestamp
            if elapsed > 0:
                self.heading = normalize_angle(
                    self.heading + math.radians(sample.rotation_rate.alpha) * elapsed
                )
        self._last_timestamp = timestamp

        if sample.magnetometer is not None:
            self._correct(sample.magnetometer)
        return self.heading

    def _correct(self, field: MagneticField) -> None:
        if (
            self._last_calibration is not None
            and field.timestamp - self._last_calibration < self.magnetometer_interval
        ):
            return
        magnetic_heading = math.atan2(field.y, field.x)
        error = normalize_angle(magnetic_heading - self.heading)
        self.heading = normalize_angle(self.heading + (1.0 - self.gyro_weight) * error)
        self._last_calibration = field.timestamp

    def reset(self, heading: float = 0.0) -> None:
        self.heading = normalize_angle(heading)
        self._last_timestamp = None
        self._last_calibration = None


class StrideMethod(str, Enum):
    HEIGHT = "height"
    WEINBERG = "weinberg"
    FIXED = "fixed"


class StrideLengthModel:
    """Stride length estimate, the dominant source of dead-reckoning drift.

    The default is proportional to the user's height. ``recalibrate`` rescales
    whichever method is active from a walked distance measured elsewhere.
    """

    MIN_LENGTH = 0.4
    MAX_LENGTH = 1.2

    def __init__(
        self,
        user_height_cm: float = 170.0,
        *,
        method: StrideMethod = StrideMethod.HEIGHT,
        fixed_length: float = 0.65,
    ) -> None:
        if user_height_cm <= 0:
            raise ValueError("user_height_cm must be positive.")
        self.user_height_cm = user_height_cm
        self.method = StrideMethod(method)
        self.fixed_length = fixed_length
        self.scale = 1.0
        self._estimates_total = 0.0
        self._estimates_count = 0

    def height_length(self) -> float:
        return _clamp(self.user_height_cm * 0.004, self.MIN_LENGTH, 1.0)

    def weinberg_length(self, step: StepEvent) -> float:
        k = _clamp(0.37 + (self.user_height_cm - 170.0) * 0.0003, 0.35, 0.55)
        swing = max(step.peak - step.valley, 0.0)
        return _clamp(k * swing ** 0.25, self.MIN_LENGTH, self.MAX_LENGTH)

    def _unscaled(self, step: Optional[StepEvent]) -> float:
        if self.method == StrideMethod.FIXED:
            return self.fixed_length
        if self.method == StrideMethod.WEINBERG and step is not None:
            return self.weinberg_length(step)
        return self.height_length()

    def estimate(self, step: Optional[StepEvent] = None) -> float:
        length = self._unscaled(step)
        if step is not None:
            self._estimates_total += length
            self._estimates_count += 1
        return length * self.scale

    def recalibrate(self, measured_distance_meters: float, step_count: int) -> float:
        """Scale future estimates so ``step_count`` steps cover the measured distance."""

        if step_count <= 0 or measured_distance_meters <= 0:
            raise ValueError("Recalibration needs a positive distance and step count.")
        if self._estimates_count:
            average = self._estimates_total / self._estimates_count
        else:
            average = self._unscaled(None)
        self.scale = measured_distance_meters / (average * step_count)
        logger.info("Stride length rescaled by %.3f over %d steps", self.scale, step_count)
        return self.scale


@dataclass(frozen=True)
class Displacement:
    dx: float = 0.0
    dy: float = 0.0

    @property
    def magnitude(self) -> float:
        return math.hypot(self.dx, self.dy)


@dataclass(frozen=True)
class PDRState:
    step_count: int
    heading_radians: float
    stride_length_meters: float
    relative_displacement: Displacement
    last_updated_at: Optional[float]


class PDRTracker:
    """Turns a :class:`SensorSample` stream into displacement since the last recalibration."""

    def __init__(
        self,
        user_height_cm: float = 170.0,
        *,
        step_detector: Optional[StepDetector] = None,
        heading: Optional[HeadingEstimator] = None,
        stride: Optional[StrideLengthModel] = None,
    ) -> None:
        self.step_detector = step_detector or StepDetector()
        self.heading = heading or HeadingEstimator()
        self.stride = stride or StrideLengthModel(user_height_cm)
        self._dx = 0.0
        self._dy = 0.0
        self._steps_since_origin = 0
        self._last_stride: Optional[float] = None
        self._last_updated_at: Optional[float] = None
        self.total_steps = 0
        self.total_distance = 0.0

    def process_sample(self, sample: SensorSample) -> Optional[StepEvent]:
        heading = self.heading.update(sample)
        step = self.step_detector.update(sample.acceleration)
        self._last_updated_at = sample.timestamp
        if step is None:
            return None

        length = self.stride.estimate(step)
        self._dx += length * math.cos(heading)
        self._dy += length * math.sin(heading)
        self._steps_since_origin += 1
        self._last_stride = length
        self.total_steps += 1
        self.total_distance += length
        return step

    @property
    def relative_displacement(self) -> Displacement:
        return Displacement(self._dx, self._dy)

    @property
    def state(self) -> PDRState:
        return PDRState(
            step_count=self._steps_since_origin,
            heading_radians=self.heading.heading,
            stride_length_meters=self._last_stride if self._last_stride is not None else self.stride.estimate(),
            relative_displacement=self.relative_displacement,
            last_updated_at=self._last_updated_at,
        )

    def recalibrate_origin(self) -> None:
        """Zero the accumulated displacement; only the fusion engine calls this."""

        self._dx = 0.0
        self._dy = 0.0
        self._steps_since_origin = 0


__all__ = [
    "Displacement",
    "HeadingEstimator",
    "PDRState",
    "PDRTracker",
    "StepDetector",
    "StepDetectorConfig",
    "StepEvent",
    "StrideLengthModel",
    "StrideMethod",
    "normalize_angle",
]
