"""Geofence evaluation, including the accuracy-spoofing regression."""

import pytest

from tracking.geo import Position, haversine_meters, offset_position
from tracking.geofence import GeofenceSpec, evaluate, evaluate_location, resolve_geofence

CLASSROOM_LATITUDE = 37.4607
CLASSROOM_LONGITUDE = 126.9524

CLASSROOM = GeofenceSpec(
    center_latitude=CLASSROOM_LATITUDE,
    center_longitude=CLASSROOM_LONGITUDE,
    radius_meters=100.0,
    display_name="Engineering Hall 301",
)

CENTER = Position(
    latitude=CLASSROOM_LATITUDE,
    longitude=CLASSROOM_LONGITUDE,
    accuracy_meters=0.0,
    timestamp=0.0,
)


def _north_of_center(meters):
    return offset_position(CENTER, 0.0, meters)


def test_student_at_95_metres_is_inside():
    latitude, longitude = _north_of_center(95.0)
    result = evaluate_location(latitude, longitude, 10.0, CLASSROOM)

    assert result.is_valid
    assert result.distance == pytest.approx(95.0, abs=1.0)


def test_student_at_105_metres_is_outside():
    latitude, longitude = _north_of_center(105.0)
    result = evaluate_location(latitude, longitude, 10.0, CLASSROOM)

    assert not result.is_valid
    assert result.distance == pytest.approx(105.0, abs=1.0)


def test_student_exactly_on_the_boundary_is_inside():
    latitude, longitude = _north_of_center(100.0)
    distance = haversine_meters(CLASSROOM_LATITUDE, CLASSROOM_LONGITUDE, latitude, longitude)
    fence = GeofenceSpec(CLASSROOM_LATITUDE, CLASSROOM_LONGITUDE, radius_meters=distance)

    result = evaluate_location(latitude, longitude, 10.0, fence)

    assert result.distance == result.allowed_radius
    assert result.is_valid


@pytest.mark.parametrize("offset", [60.0, 101.0, 150.0])
def test_reported_accuracy_never_changes_the_verdict(offset):
    latitude, longitude = _north_of_center(offset)
    results = [evaluate_location(latitude, longitude, accuracy, CLASSROOM) for accuracy in (1.0, 50.0, 100.0)]

    assert len({result.is_valid for result in results}) == 1
    assert len({result.distance for result in results}) == 1
    for result in results:
        assert result.effective_distance == result.distance


def test_accuracy_is_kept_for_diagnostics():
    result = evaluate(
        Position(CLASSROOM_LATITUDE, CLASSROOM_LONGITUDE, accuracy_meters=42.0, timestamp=0.0),
        CLASSROOM,
    )

    assert result.accuracy_meters == 42.0
    assert result.distance == 0.0
    assert result.is_valid


def test_session_override_beats_course_default():
    session_fence = GeofenceSpec(37.0, 127.0, 50.0)

    assert resolve_geofence(session_fence, CLASSROOM) is session_fence
    assert resolve_geofence(None, CLASSROOM) is CLASSROOM
    assert resolve_geofence(None, None) is None


def test_well_formed_checks_coordinates_and_radius():
    assert CLASSROOM.is_well_formed
    assert not GeofenceSpec(91.0, 0.0, 100.0).is_well_formed
    assert not GeofenceSpec(0.0, 0.0, -1.0).is_well_formed
    assert not GeofenceSpec(0.0, 0.0, float("inf")).is_well_formed
