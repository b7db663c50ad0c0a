"""
Client-side heartbeat scheduling.

The scheduler owns two cadences, foreground and background, and an explicit
visibility state that picks between them. Every transition cancels the timer
that is no longer wanted, arms the other one and sends a heartbeat straight
away so no gap exceeds one interval. Timers are created by an injectable
factory; the default runs repeating ``loop.call_later`` callbacks on a single
asyncio event loop, which is also the only context allowed to touch the
fusion engine.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

from django.conf import settings

from .fusion import FusedPosition, PositionFusionEngine

logger = logging.getLogger(__name__)


class VisibilityState(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"
    HIDDEN = "hidden"


# Value reported as the heartbeat ``source`` for each visibility state.
TICK_SOURCES = {
    VisibilityState.FOREGROUND: "foreground",
    VisibilityState.BACKGROUND: "background",
    VisibilityState.HIDDEN: "page-hidden",
}


@dataclass(frozen=True)
class HeartbeatPayload:
    attendance_id: int
    session_id: int
    latitude: float
    longitude: float
    accuracy: float
    timestamp: int
    is_background: bool
    source: str
    tracking_mode: Optional[str] = None
    environment: Optional[str] = None
    confidence: Optional[float] = None
    gps_weight: Optional[float] = None
    pdr_weight: Optional[float] = None

    def as_json(self) -> dict:
        """Request body accepted by the heartbeat endpoint (camelCase keys, nulls dropped)."""

        body = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            head, *rest = key.split("_")
            body[head + "".join(part.title() for part in rest)] = value
        return body

    @classmethod
    def from_position(
        cls,
        position: FusedPosition,
        *,
        attendance_id: int,
        session_id: int,
        is_background: bool,
        source: str,
    ) -> "HeartbeatPayload":
        return cls(
            attendance_id=attendance_id,
            session_id=session_id,
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy=position.accuracy_meters,
            timestamp=int(round(position.timestamp * 1000)),
            is_background=is_background,
            source=source,
            tracking_mode=position.tracking_mode.value,
            environment=position.environment.value,
            confidence=position.confidence,
            gps_weight=position.gps_weight,
            pdr_weight=position.pdr_weight,
        )


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]
SenderResult = Optional[Mapping[str, Any]]
Sender = Callable[[HeartbeatPayload], Union[SenderResult, Awaitable[SenderResult]]]


class WakeLock(Protocol):
    def acquire(self) -> None:
        ...

    def release(self) -> None:
        ...


class _RepeatingTimer:
    """Re-arm ``loop.call_later`` after every run until cancelled."""

    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, callback: Callable[[], None]) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle = loop.call_later(interval, self._run)

    def _run(self) -> None:
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._interval, self._run)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


def event_loop_timers(loop: Optional[asyncio.AbstractEventLoop] = None) -> TimerFactory:
    """Timer factory bound to ``loop`` (the running loop when omitted)."""

    def factory(interval: float, callback: Callable[[], None]) -> TimerHandle:
        return _RepeatingTimer(loop or asyncio.get_running_loop(), interval, callback)

    return factory


class TrackingScheduler:
    """Drive periodic heartbeats for one attendance record."""

    def __init__(
        self,
        engine: PositionFusionEngine,
        sender: Sender,
        *,
        attendance_id: int,
        session_id: int,
        timers: Optional[TimerFactory] = None,
        wake_lock: Optional[WakeLock] = None,
        foreground_interval: Optional[float] = None,
        background_interval: Optional[float] = None,
        on_verdict: Optional[Callable[[Mapping[str, Any]], None]] = None,
    ) -> None:
        self.engine = engine
        self.sender = sender
        self.attendance_id = attendance_id
        self.session_id = session_id
        self.timers = timers or event_loop_timers()
        self.wake_lock = wake_lock
        self.on_verdict = on_verdict
        self.foreground_interval = float(
            foreground_interval
            if foreground_interval is not None
            else getattr(settings, "ATTENDANCE_FOREGROUND_INTERVAL_SECONDS", 30.0)
        )
        self.background_interval = float(
            background_interval
            if background_interval is not None
            else getattr(settings, "ATTENDANCE_BACKGROUND_INTERVAL_SECONDS", 60.0)
        )
        self.visibility = VisibilityState.FOREGROUND
        self.is_running = False
        self.heartbeats_sent = 0
        self.send_failures = 0
        self._foreground_timer: Optional[TimerHandle] = None
        self._background_timer: Optional[TimerHandle] = None
        self._wake_lock_held = False

    def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._acquire_wake_lock()
        self._arm()
        logger.info(
            "Heartbeat scheduling started for attendance %s (%s)",
            self.attendance_id,
            self.visibility.value,
        )
        self.tick(TICK_SOURCES[self.visibility])

    def set_visibility(self, state: VisibilityState) -> None:
        state = VisibilityState(state)
        if state == self.visibility:
            return
        self.visibility = state
        if not self.is_running:
            return
        self._arm()
        self.tick(TICK_SOURCES[state])

    def stop(self) -> None:
        """Cancel both cadences, release the engine and wake lock. Safe to call repeatedly."""

        was_running = self.is_running
        self.is_running = False
        self._cancel_foreground()
        self._cancel_background()
        if was_running:
            self.engine.stop_tracking()
        self._release_wake_lock()
        if was_running:
            logger.info(
                "Heartbeat scheduling stopped for attendance %s after %d heartbeats",
                self.attendance_id,
                self.heartbeats_sent,
            )

    def tick(self, source: Optional[str] = None) -> None:
        if not self.is_running:
            return
        position = self.engine.current_position
        if position is None:
            logger.debug("No position available yet; skipping heartbeat")
            return
        payload = HeartbeatPayload.from_position(
            position,
            attendance_id=self.attendance_id,
            session_id=self.session_id,
            is_background=self.visibility != VisibilityState.FOREGROUND,
            source=source or TICK_SOURCES[self.visibility],
        )
        try:
            result = self.sender(payload)
        except Exception:
            # The next tick resubmits the current position.
            self.send_failures += 1
            logger.warning("Heartbeat delivery failed for attendance %s", self.attendance_id, exc_info=True)
            return
        self.heartbeats_sent += 1

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(self._on_send_done)
        else:
            self._handle_response(result)

    def _on_send_done(self, task: "asyncio.Future[SenderResult]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.send_failures += 1
            logger.warning(
                "Heartbeat delivery failed for attendance %s",
                self.attendance_id,
                exc_info=(type(error), error, error.__traceback__),
            )
            return
        self._handle_response(task.result())

    def _handle_response(self, response: SenderResult) -> None:
        if not response or not self.is_running:
            return
        if self.on_verdict is not None:
            self.on_verdict(response)
        if response.get("sessionEnded") or response.get("trackingStopped"):
            logger.info("Server asked to stop tracking attendance %s", self.attendance_id)
            self.stop()

    # -- timers --------------------------------------------------------------

    def _arm(self) -> None:
        if self.visibility == VisibilityState.FOREGROUND:
            self._cancel_background()
            if self._foreground_timer is None:
                self._foreground_timer = self.timers(self.foreground_interval, self._foreground_tick)
        else:
            self._cancel_foreground()
            if self._background_timer is None:
                self._background_timer = self.timers(self.background_interval, self._background_tick)

    def _foreground_tick(self) -> None:
        self.tick(TICK_SOURCES[VisibilityState.FOREGROUND])

    def _background_tick(self) -> None:
        self.tick(TICK_SOURCES[self.visibility])

    def _cancel_foreground(self) -> None:
        if self._foreground_timer is not None:
            self._foreground_timer.cancel()
            self._foreground_timer = None

    def _cancel_background(self) -> None:
        if self._background_timer is not None:
            self._background_timer.cancel()
            self._background_timer = None

    # -- wake lock -------------------------------------------------------------

    def _acquire_wake_lock(self) -> None:
        if self.wake_lock is None:
            return
        try:
            self.wake_lock.acquire()
        except Exception:
            logger.warning("Could not acquire screen wake lock; continuing without it", exc_info=True)
            return
        self._wake_lock_held = True

    def _release_wake_lock(self) -> None:
        if self.wake_lock is None or not self._wake_lock_held:
            return
        self._wake_lock_held = False
        try:
            self.wake_lock.release()
        except Exception:
            logger.debug("Wake lock release failed", exc_info=True)


__all__ = [
    "HeartbeatPayload",
    "TICK_SOURCES",
    "TimerFactory",
    "TrackingScheduler",
    "VisibilityState",
    "WakeLock",
    "event_loop_timers",
]
