"""GPS and dead-reckoning fusion producing one authoritative position stream.

GPS is absolute but unreliable indoors; dead reckoning is smooth but drifts
without bound. Any fix accurate enough to trust becomes the new anchor and
zeroes the accumulated PDR displacement. Between anchors the position is the
anchor plus the displacement walked since, with a confidence that decays with
elapsed time and step count. A fix too coarse to anchor on is blended into
that estimate by relative confidence, and the reported weights are the ones
used for the blend.

The engine is not thread-safe. All calls (GPS fixes, sensor samples, start
and stop) are expected from the single scheduling context that owns it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from django.conf import settings

from .environment import Environment, EnvironmentDetector
from .exceptions import SensorError, SensorNotSupported
from .geo import Position, PositionSource, offset_position
from .pdr import PDRTracker
from .sensors import SensorManager, SensorSample

logger = logging.getLogger(__name__)


class TrackingMode(str, Enum):
    GPS_ONLY = "gps-only"
    PDR_ONLY = "pdr-only"
    FUSION = "fusion"


@dataclass(frozen=True)
class RecalibrationConfig:
    min_gps_accuracy_meters: float = 40.0


@dataclass(frozen=True)
class FusionConfig:
    recalibration: RecalibrationConfig = field(default_factory=RecalibrationConfig)
    user_height_cm: float = 170.0
    sensor_frequency_hz: int = 60
    # Dead-reckoning confidence decays by this factor per minute since the anchor...
    confidence_decay_per_minute: float = 0.05
    # ...and by this factor per step taken since the anchor.
    confidence_decay_per_step: float = 0.98
    min_confidence: float = 0.1
    # Applied when no fix has ever been accurate enough to anchor on.
    unanchored_confidence_factor: float = 0.5
    # Accuracy at or below which a GPS fix is fully trusted for weighting.
    gps_reference_accuracy_meters: float = 20.0
    drift_meters_per_minute: float = 0.5
    drift_meters_per_step: float = 0.05
    max_drift_meters: float = 50.0

    @classmethod
    def from_settings(cls, **overrides) -> "FusionConfig":
        threshold = float(getattr(settings, "ATTENDANCE_RECALIBRATION_ACCURACY_METERS", 40.0))
        overrides.setdefault("recalibration", RecalibrationConfig(min_gps_accuracy_meters=threshold))
        return cls(**overrides)


@dataclass(frozen=True)
class FusedPosition(Position):
    confidence: float = 1.0
    gps_weight: float = 1.0
    pdr_weight: float = 0.0
    step_count: int = 0
    tracking_mode: TrackingMode = TrackingMode.FUSION
    environment: Environment = Environment.UNKNOWN


Subscriber = Callable[[FusedPosition], None]


class PositionFusionEngine:
    """Blend GPS fixes with PDR displacement and notify subscribers on every update."""

    def __init__(
        self,
        config: Optional[FusionConfig] = None,
        *,
        sensors: Optional[SensorManager] = None,
        pdr: Optional[PDRTracker] = None,
        environment_detector: Optional[EnvironmentDetector] = None,
    ) -> None:
        self.config = config or FusionConfig()
        self.sensors = sensors
        self.pdr = pdr or PDRTracker(self.config.user_height_cm)
        self.environment = environment_detector or EnvironmentDetector()
        self._subscribers: List[Subscriber] = []
        self._anchor: Optional[Position] = None
        self._anchor_trusted = False
        self._current: Optional[FusedPosition] = None
        self.is_tracking = False
        self.sensors_active = False
        self.gps_updates = 0
        self.recalibrations = 0
        self.sensor_errors = 0

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; the returned function removes it again."""

        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _emit(self, position: FusedPosition) -> None:
        self._current = position
        for callback in list(self._subscribers):
            try:
                callback(position)
            except Exception:
                logger.exception("Position subscriber %r failed", callback)

    # -- state -------------------------------------------------------------

    @property
    def current_position(self) -> Optional[FusedPosition]:
        return self._current

    @property
    def has_trusted_anchor(self) -> bool:
        return self._anchor_trusted

    @property
    def tracking_mode(self) -> TrackingMode:
        if not self.sensors_active:
            return TrackingMode.GPS_ONLY
        if not self._anchor_trusted:
            return TrackingMode.PDR_ONLY
        return TrackingMode.FUSION

    # -- lifecycle ---------------------------------------------------------

    def start_tracking(self, initial_fix: Position) -> FusedPosition:
        """Seed the anchor with ``initial_fix`` and start consuming sensor samples.

        A device without usable motion sensors degrades to GPS-only mode.
        :class:`~tracking.exceptions.SensorPermissionDenied` propagates and
        leaves the engine stopped.
        """

        if self.is_tracking and self._current is not None:
            return self._current

        self._start_sensors()
        self._anchor = initial_fix
        self._anchor_trusted = False
        self.pdr.recalibrate_origin()
        self.is_tracking = True
        fused = self.update_gps(initial_fix)
        logger.info("Position tracking started in %s mode", self.tracking_mode.value)
        return fused

    def _start_sensors(self) -> None:
        self.sensors_active = False
        if self.sensors is None:
            return
        try:
            self.sensors.initialize()
            self.sensors.start_tracking(self.handle_sample, self._on_sensor_error)
        except SensorNotSupported:
            logger.warning("Motion sensors unavailable; continuing with GPS only")
            return
        self.sensors_active = True

    def stop_tracking(self) -> None:
        """Halt emission and release the sensor subscription. Safe to call repeatedly."""

        if self.sensors is not None and self.sensors_active:
            self.sensors.stop_tracking()
        self.sensors_active = False
        if self.is_tracking:
            logger.info(
                "Position tracking stopped after %d GPS updates and %d recalibrations",
                self.gps_updates,
                self.recalibrations,
            )
        self.is_tracking = False

    # -- inputs ------------------------------------------------------------

    def update_gps(self, fix: Position) -> Optional[FusedPosition]:
        if not self.is_tracking:
            logger.debug("Ignoring GPS fix received while tracking is stopped")
            return None

        self.gps_updates += 1
        self.environment.update(fix.accuracy_meters, fix.timestamp)

        if fix.accuracy_meters <= self.config.recalibration.min_gps_accuracy_meters:
            fused = self._recalibrate(fix)
        elif not self.sensors_active:
            # Without motion data the fix itself is the best estimate available.
            fused = FusedPosition(
                latitude=fix.latitude,
                longitude=fix.longitude,
                accuracy_meters=fix.accuracy_meters,
                timestamp=fix.timestamp,
                source=PositionSource.GPS,
                confidence=self._gps_confidence(fix.accuracy_meters),
                gps_weight=1.0,
                pdr_weight=0.0,
                tracking_mode=self.tracking_mode,
                environment=self.environment.environment,
            )
        else:
            fused = self._dead_reckon(fix.timestamp, gps_fix=fix)

        self._emit(fused)
        return fused

    def handle_sample(self, sample: SensorSample) -> Optional[FusedPosition]:
        """Sensor callback: advance PDR and emit a new estimate whenever a step completes."""

        if not self.is_tracking or self._anchor is None:
            return None
        step = self.pdr.process_sample(sample)
        if step is None:
            return None
        fused = self._dead_reckon(sample.timestamp)
        self._emit(fused)
        return fused

    def _on_sensor_error(self, error: SensorError) -> None:
        self.sensor_errors += 1
        logger.debug("Sensor reading dropped (%s): %s", error.code.value, error)

    # -- estimation --------------------------------------------------------

    def _recalibrate(self, fix: Position) -> FusedPosition:
        self._anchor = fix
        self._anchor_trusted = True
        self.pdr.recalibrate_origin()
        self.recalibrations += 1
        return FusedPosition(
            latitude=fix.latitude,
            longitude=fix.longitude,
            accuracy_meters=fix.accuracy_meters,
            timestamp=fix.timestamp,
            source=PositionSource.GPS,
            confidence=1.0,
            gps_weight=1.0,
            pdr_weight=0.0,
            step_count=0,
            tracking_mode=self.tracking_mode,
            environment=self.environment.environment,
        )

    def _dead_reckon(self, timestamp: float, gps_fix: Optional[Position] = None) -> FusedPosition:
        anchor = self._anchor
        state = self.pdr.state
        displacement = state.relative_displacement
        latitude, longitude = offset_position(anchor, displacement.dx, displacement.dy)

        elapsed = max(0.0, timestamp - anchor.timestamp)
        confidence = self._pdr_confidence(elapsed, state.step_count)
        drift = min(
            self.config.max_drift_meters,
            self.config.drift_meters_per_minute * elapsed / 60.0
            + self.config.drift_meters_per_step * state.step_count,
        )
        accuracy = anchor.accuracy_meters + drift
        gps_weight = 0.0

        if self._anchor_trusted:
            source = PositionSource.FUSED
            if gps_fix is not None:
                # Blend the fix in by relative confidence; the anchor itself is left alone.
                gps_confidence = self._gps_confidence(gps_fix.accuracy_meters)
                gps_weight = gps_confidence / (gps_confidence + confidence)
                latitude = gps_fix.latitude * gps_weight + latitude * (1.0 - gps_weight)
                longitude = gps_fix.longitude * gps_weight + longitude * (1.0 - gps_weight)
                accuracy = gps_fix.accuracy_meters * gps_weight + accuracy * (1.0 - gps_weight)
        else:
            source = PositionSource.PDR
            confidence = max(
                self.config.min_confidence,
                confidence * self.config.unanchored_confidence_factor,
            )

        return FusedPosition(
            latitude=latitude,
            longitude=longitude,
            accuracy_meters=accuracy,
            timestamp=timestamp,
            source=source,
            confidence=confidence,
            gps_weight=gps_weight,
            pdr_weight=1.0 - gps_weight,
            step_count=state.step_count,
            tracking_mode=self.tracking_mode,
            environment=self.environment.environment,
        )

    def _pdr_confidence(self, elapsed_seconds: float, steps: int) -> float:
        decay = math.exp(-self.config.confidence_decay_per_minute * elapsed_seconds / 60.0)
        decay *= self.config.confidence_decay_per_step ** steps
        return max(self.config.min_confidence, min(1.0, decay))

    def _gps_confidence(self, accuracy_meters: float) -> float:
        reference = self.config.gps_reference_accuracy_meters
        if accuracy_meters <= reference:
            return 1.0
        return max(self.config.min_confidence, math.exp(-(accuracy_meters - reference) / reference))


__all__ = [
    "FusedPosition",
    "FusionConfig",
    "PositionFusionEngine",
    "RecalibrationConfig",
    "TrackingMode",
]
