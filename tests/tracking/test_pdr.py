"""Pedestrian dead reckoning: step detection, heading and stride length."""

import math

import pytest

from tracking.pdr import (
    STANDARD_GRAVITY,
    HeadingEstimator,
    PDRTracker,
    StepDetector,
    StepEvent,
    StrideLengthModel,
    StrideMethod,
    normalize_angle,
)
from tracking.sensors import Acceleration, MagneticField, RotationRate, SensorSample

# Gravity-removed acceleration for one stride sampled at 10 Hz: rest, peak, trough.
STRIDE_PATTERN = (0.0, 0.0, 3.0, 0.0, -1.0)


def walk(strides, *, start=0.0, interval=0.1, yaw_rate=0.0):
    samples = []
    for index in range(strides * len(STRIDE_PATTERN)):
        timestamp = start + index * interval
        linear = STRIDE_PATTERN[index % len(STRIDE_PATTERN)]
        samples.append(
            SensorSample(
                acceleration=Acceleration(0.0, 0.0, STANDARD_GRAVITY + linear, timestamp),
                rotation_rate=RotationRate(alpha=yaw_rate, beta=0.0, gamma=0.0),
            )
        )
    return samples


def test_one_step_per_stride():
    detector = StepDetector()
    steps = [detector.update(sample.acceleration) for sample in walk(10)]

    detected = [step for step in steps if step is not None]
    assert len(detected) == 10
    assert detector.step_count == 10
    assert detected[0].peak == pytest.approx(3.0)
    assert detected[0].timestamp == pytest.approx(0.2)


def test_peaks_below_threshold_are_ignored():
    detector = StepDetector()
    for index in range(30):
        linear = (0.0, 1.0, 0.0, -0.5)[index % 4]
        detector.update(Acceleration(0.0, 0.0, STANDARD_GRAVITY + linear, index * 0.1))

    assert detector.step_count == 0


def test_peaks_closer_than_debounce_interval_count_once():
    detector = StepDetector()
    # Two peaks 0.15 s apart, separated by a trough.
    readings = [0.0, 3.0, -1.0, 3.0, 0.0, 0.0]
    for index, linear in enumerate(readings):
        detector.update(Acceleration(0.0, 0.0, STANDARD_GRAVITY + linear, index * 0.05))

    assert detector.step_count == 1


def test_a_second_peak_without_trough_is_not_a_step():
    detector = StepDetector()
    readings = [0.0, 3.0, 1.0, 3.0, 1.0, 0.0]
    for index, linear in enumerate(readings):
        detector.update(Acceleration(0.0, 0.0, STANDARD_GRAVITY + linear, index * 0.3))

    assert detector.step_count == 1


def test_adaptive_threshold_rises_with_noisy_signal():
    detector = StepDetector()
    assert detector.current_threshold() == 1.5
    for index in range(40):
        linear = 6.0 if index % 2 else -6.0
        detector.update(Acceleration(0.0, 0.0, STANDARD_GRAVITY + linear, index * 0.3))

    assert detector.current_threshold() > 1.5


def test_heading_integrates_gyroscope_and_wraps():
    estimator = HeadingEstimator()
    # 90 deg/s for 3 s turns the heading through 270 degrees.
    for index in range(31):
        estimator.update(
            SensorSample(
                acceleration=Acceleration(0.0, 0.0, STANDARD_GRAVITY, index * 0.1),
                rotation_rate=RotationRate(alpha=90.0, beta=0.0, gamma=0.0),
            )
        )

    assert estimator.heading == pytest.approx(-math.pi / 2, abs=1e-6)


def test_magnetometer_pulls_heading_at_most_once_per_second():
    estimator = HeadingEstimator(gyro_weight=0.5)

    def sample(timestamp):
        return SensorSample(
            acceleration=Acceleration(0.0, 0.0, STANDARD_GRAVITY, timestamp),
            magnetometer=MagneticField(x=0.0, y=1.0, z=0.0, timestamp=timestamp),
        )

    estimator.update(sample(0.0))
    assert estimator.heading == pytest.approx(math.pi / 4)
    estimator.update(sample(0.5))
    assert estimator.heading == pytest.approx(math.pi / 4)
    estimator.update(sample(1.0))
    assert estimator.heading == pytest.approx(3 * math.pi / 8)


@pytest.mark.parametrize("angle,expected", [(3 * math.pi, math.pi), (-3 * math.pi / 2, math.pi / 2), (0.5, 0.5)])
def test_normalize_angle(angle, expected):
    assert normalize_angle(angle) == pytest.approx(expected)


@pytest.mark.parametrize("height,expected", [(170, 0.68), (80, 0.4), (300, 1.0)])
def test_height_stride_is_clamped(height, expected):
    assert StrideLengthModel(height).estimate() == pytest.approx(expected)


def test_weinberg_stride_uses_acceleration_swing():
    model = StrideLengthModel(170, method=StrideMethod.WEINBERG)
    length = model.estimate(StepEvent(timestamp=0.0, peak=3.0, valley=-13.0))

    assert length == pytest.approx(0.37 * 16 ** 0.25)


def test_stride_recalibration_scales_future_estimates():
    model = StrideLengthModel(170, method=StrideMethod.FIXED, fixed_length=0.5)
    for _ in range(10):
        model.estimate(StepEvent(0.0, 3.0, -1.0))

    scale = model.recalibrate(measured_distance_meters=6.0, step_count=10)

    assert scale == pytest.approx(1.2)
    assert model.estimate() == pytest.approx(0.6)
    with pytest.raises(ValueError):
        model.recalibrate(0.0, 10)


def test_tracker_accumulates_displacement_along_heading():
    tracker = PDRTracker(170)
    for sample in walk(10):
        tracker.process_sample(sample)

    state = tracker.state
    assert state.step_count == 10
    assert state.relative_displacement.dx == pytest.approx(6.8)
    assert state.relative_displacement.dy == pytest.approx(0.0, abs=1e-9)
    assert state.stride_length_meters == pytest.approx(0.68)
    assert state.last_updated_at == pytest.approx(4.9)


def test_recalibrate_origin_zeroes_displacement_but_keeps_totals():
    tracker = PDRTracker(170)
    for sample in walk(5):
        tracker.process_sample(sample)

    tracker.recalibrate_origin()

    assert tracker.relative_displacement.magnitude == 0.0
    assert tracker.state.step_count == 0
    assert tracker.total_steps == 5
    assert tracker.total_distance == pytest.approx(3.4)
