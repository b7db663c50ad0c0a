from datetime import datetime, timezone as dt_timezone

from rest_framework import serializers

from attendance.models import ClassSession
from tracking.checkin import CheckInRequest
from tracking.environment import Environment
from tracking.fusion import TrackingMode
from tracking.heartbeat import HeartbeatRequest
from tracking.scheduler import TICK_SOURCES

# Service-worker heartbeats come from the background sync path, not the scheduler.
HEARTBEAT_SOURCES = sorted({*TICK_SOURCES.values(), "service-worker"})


class HeartbeatRequestSerializer(serializers.Serializer):
    """Validate the camelCase heartbeat body posted by the tracking client."""

    attendanceId = serializers.IntegerField(min_value=1)
    sessionId = serializers.IntegerField(min_value=1)
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    accuracy = serializers.FloatField(min_value=0)
    timestamp = serializers.IntegerField(min_value=0, help_text="Capture time in epoch milliseconds")
    isBackground = serializers.BooleanField(default=False)
    source = serializers.ChoiceField(choices=HEARTBEAT_SOURCES, default="foreground")
    trackingMode = serializers.ChoiceField(
        choices=[mode.value for mode in TrackingMode], required=False, allow_null=True
    )
    environment = serializers.ChoiceField(
        choices=[env.value for env in Environment], required=False, allow_null=True
    )
    confidence = serializers.FloatField(min_value=0, max_value=1, required=False, allow_null=True)
    gpsWeight = serializers.FloatField(min_value=0, max_value=1, required=False, allow_null=True)
    pdrWeight = serializers.FloatField(min_value=0, max_value=1, required=False, allow_null=True)

    def validate_timestamp(self, value):
        try:
            datetime.fromtimestamp(value / 1000.0, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise serializers.ValidationError("Timestamp is out of range.")
        return value

    def to_request(self) -> HeartbeatRequest:
        data = self.validated_data
        return HeartbeatRequest(
            attendance_id=data["attendanceId"],
            session_id=data["sessionId"],
            latitude=data["latitude"],
            longitude=data["longitude"],
            accuracy=data["accuracy"],
            timestamp=datetime.fromtimestamp(data["timestamp"] / 1000.0, tz=dt_timezone.utc),
            is_background=data["isBackground"],
            source=data["source"],
            tracking_mode=data.get("trackingMode"),
            environment=data.get("environment"),
            confidence=data.get("confidence"),
            gps_weight=data.get("gpsWeight"),
            pdr_weight=data.get("pdrWeight"),
        )


class CheckInRequestSerializer(serializers.Serializer):
    sessionId = serializers.IntegerField(min_value=1)
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    accuracy = serializers.FloatField(min_value=0, default=0.0)

    def to_request(self) -> CheckInRequest:
        data = self.validated_data
        return CheckInRequest(
            session_id=data["sessionId"],
            latitude=data["latitude"],
            longitude=data["longitude"],
            accuracy=data["accuracy"],
        )


class AttendanceSummarySerializer(serializers.Serializer):
    total = serializers.IntegerField()
    present = serializers.IntegerField()
    late = serializers.IntegerField()
    absent = serializers.IntegerField()
    left_early = serializers.IntegerField()
    attendance_rate = serializers.IntegerField()


class SessionStatusSerializer(serializers.ModelSerializer):
    """Serializer for a session's lifecycle state."""

    course = serializers.CharField(source="course.name", read_only=True)

    class Meta:
        model = ClassSession
        fields = ["id", "course", "status", "created_at", "updated_at"]
        read_only_fields = fields
