"""Indoor/outdoor classification from the recent quality of GPS fixes."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    OUTDOOR = "outdoor"
    INDOOR = "indoor"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class EnvironmentDetectorConfig:
    outdoor_accuracy_threshold: float = 30.0
    indoor_accuracy_threshold: float = 100.0
    gps_timeout: float = 10.0
    hysteresis: float = 5.0
    min_samples: int = 3
    max_history: int = 20


class EnvironmentDetector:
    """
    Track whether the user is probably indoors.

    The mean accuracy of the last ``min_samples`` fixes decides: at or below
    the outdoor threshold means outdoor, at or above the indoor threshold
    means indoor, anything in between keeps the current classification. A
    new classification has to persist for ``hysteresis`` seconds before it
    replaces the current one. No fix for ``gps_timeout`` seconds also counts
    as indoor.
    """

    def __init__(self, config: Optional[EnvironmentDetectorConfig] = None) -> None:
        self.config = config or EnvironmentDetectorConfig()
        self.environment = Environment.UNKNOWN
        self.confidence = 0.0
        self.transition_count = 0
        self._history: Deque[float] = deque(maxlen=self.config.max_history)
        self._last_fix_at: Optional[float] = None
        self._pending: Optional[Environment] = None
        self._pending_since: Optional[float] = None

    def update(self, accuracy_meters: float, timestamp: float) -> Environment:
        self._history.append(float(accuracy_meters))
        self._last_fix_at = timestamp
        if len(self._history) >= self.config.min_samples:
            self._classify(timestamp)
        return self.environment

    def check_timeout(self, now: float) -> Environment:
        """Call periodically; a long silence from GPS is a strong indoor signal."""

        if self._last_fix_at is not None and now - self._last_fix_at > self.config.gps_timeout:
            self._request(Environment.INDOOR, 0.9, now)
        return self.environment

    def _classify(self, now: float) -> None:
        recent = list(self._history)[-self.config.min_samples:]
        average = sum(recent) / len(recent)

        if average <= self.config.outdoor_accuracy_threshold:
            detected = Environment.OUTDOOR
            confidence = 1.0 - (average / self.config.outdoor_accuracy_threshold) * 0.3
        elif average >= self.config.indoor_accuracy_threshold:
            detected = Environment.INDOOR
            confidence = min(1.0, average / self.config.indoor_accuracy_threshold)
        else:
            detected = Environment.OUTDOOR if self.environment == Environment.UNKNOWN else self.environment
            confidence = 0.5

        if detected == self.environment:
            self._pending = None
            self.confidence = confidence
            return
        self._request(detected, confidence, now)

    def _request(self, candidate: Environment, confidence: float, now: float) -> None:
        if candidate == self.environment:
            self._pending = None
            return
        if self._pending != candidate:
            self._pending = candidate
            self._pending_since = now
            # The very first classification has nothing to flap against.
            if self.environment != Environment.UNKNOWN:
                return
        elif now - (self._pending_since or now) < self.config.hysteresis:
            return

        logger.debug("Environment changed from %s to %s", self.environment.value, candidate.value)
        self.environment = candidate
        self.confidence = confidence
        self.transition_count += 1
        self._pending = None
        self._pending_since = None

    @property
    def is_indoor(self) -> bool:
        return self.environment == Environment.INDOOR


__all__ = ["Environment", "EnvironmentDetector", "EnvironmentDetectorConfig"]
