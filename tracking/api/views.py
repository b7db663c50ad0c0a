import logging

from django.contrib.admin.views.decorators import staff_member_required
from django.db.models import Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from attendance.models import ClassSession
from tracking import monitoring
from tracking.api.serializers import (
    AttendanceSummarySerializer,
    CheckInRequestSerializer,
    HeartbeatRequestSerializer,
    SessionStatusSerializer,
)
from tracking.checkin import CheckInService
from tracking.exceptions import HeartbeatError
from tracking.heartbeat import HeartbeatProcessor
from tracking.lifecycle import SessionLifecycleManager, summarize_session

logger = logging.getLogger(__name__)


def _rounded(value):
    return None if value is None else int(round(value))


def _error_response(exc: HeartbeatError) -> Response:
    return Response({"success": False, "error": exc.message, **exc.details}, status=exc.status_code)


class CheckInView(APIView):
    """Mark the authenticated student present after verifying their position."""

    permission_classes = [permissions.IsAuthenticated]
    service_class = CheckInService

    def post(self, request):
        serializer = CheckInRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        check_in = serializer.to_request()

        try:
            result = self.service_class().check_in(request.user, check_in)
        except HeartbeatError as exc:
            return _error_response(exc)

        return Response(
            {
                "success": True,
                "attendanceId": result.record.pk,
                "sessionId": check_in.session_id,
                "message": result.message,
                "locationVerified": result.record.location_verified,
                "distance": _rounded(result.location.distance),
                "allowedRadius": _rounded(result.location.allowed_radius),
            },
            status=status.HTTP_201_CREATED if result.created else status.HTTP_200_OK,
        )


class HeartbeatView(APIView):
    """
    Accept a periodic position report for a checked-in student.

    The verdict tells the client whether the position passed the classroom
    geofence and whether it should keep tracking.
    """

    permission_classes = [permissions.IsAuthenticated]
    processor_class = HeartbeatProcessor

    def post(self, request):
        serializer = HeartbeatRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        heartbeat = serializer.to_request()

        try:
            verdict = self.processor_class().process(request.user, heartbeat)
        except HeartbeatError as exc:
            return _error_response(exc)

        data = serializer.validated_data
        metadata = {
            "source": heartbeat.source,
            "isBackground": heartbeat.is_background,
            "timestamp": data["timestamp"],
            "consecutiveViolations": verdict.consecutive_violations,
        }
        for key in ("trackingMode", "environment", "confidence", "gpsWeight", "pdrWeight"):
            if data.get(key) is not None:
                metadata[key] = data[key]

        body = {
            "success": True,
            "sessionEnded": verdict.session_ended,
            "statusChanged": verdict.status_changed,
            "newStatus": verdict.new_status,
            "lowAccuracy": verdict.low_accuracy,
            "autoEnded": verdict.auto_ended,
            "trackingStopped": verdict.tracking_stopped,
            "message": verdict.message,
            "metadata": metadata,
        }
        if verdict.location_valid is not None:
            body["locationValid"] = verdict.location_valid
        if verdict.distance is not None:
            body["distance"] = _rounded(verdict.distance)
        if verdict.allowed_radius is not None:
            body["allowedRadius"] = _rounded(verdict.allowed_radius)
        return Response(body)


class _SessionView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    lifecycle_class = SessionLifecycleManager

    def get_session(self, request, pk):
        sessions = ClassSession.objects.select_related("course")
        user = request.user
        if not user.is_staff:
            sessions = sessions.filter(
                Q(course__professor=user) | Q(attendance_records__student=user)
            ).distinct()
        return get_object_or_404(sessions, pk=pk)


class SessionStatusView(_SessionView):
    """Report a session's status, ending it first if it has run past its window."""

    def get(self, request, pk):
        session = self.get_session(request, pk)
        result = self.lifecycle_class().auto_end_if_needed(session, trigger="status")
        payload = dict(SessionStatusSerializer(session).data)
        payload.update(
            {
                "autoEndAt": result.auto_end_at.isoformat() if result.auto_end_at else None,
                "autoEnded": result.auto_ended,
                "sessionEnded": session.is_ended,
            }
        )
        if session.is_ended:
            summary = result.summary or summarize_session(session)
            payload["summary"] = AttendanceSummarySerializer(summary).data
        return Response(payload)


class SessionEndView(_SessionView):
    """End a session on behalf of its course professor (or staff)."""

    def post(self, request, pk):
        session = self.get_session(request, pk)
        user = request.user
        if not (user.is_staff or session.course.professor_id == user.pk):
            return Response(
                {"success": False, "error": "Only the course professor can end this session."},
                status=status.HTTP_403_FORBIDDEN,
            )

        result = self.lifecycle_class().end_session(session)
        summary = result.summary or summarize_session(session)
        return Response(
            {
                "success": True,
                "alreadyEnded": result.summary is None,
                "session": SessionStatusSerializer(session).data,
                "summary": AttendanceSummarySerializer(summary).data,
            }
        )


@staff_member_required
def monitoring_metrics(request):
    """Expose Prometheus metrics for heartbeat processing."""

    payload = monitoring.export_metrics()
    return HttpResponse(payload, content_type=monitoring.prometheus_content_type())
