from django.urls import path

from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView, TokenVerifyView

from .views import CheckInView, HeartbeatView, SessionEndView, SessionStatusView

urlpatterns = [
    # Auth endpoints
    path("auth/login/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("auth/verify/", TokenVerifyView.as_view(), name="token_verify"),
    # Tracking endpoints
    path("attendance/checkin/", CheckInView.as_view(), name="attendance-checkin"),
    path("attendance/heartbeat/", HeartbeatView.as_view(), name="attendance-heartbeat"),
    path("sessions/<int:pk>/status/", SessionStatusView.as_view(), name="session-status"),
    path("sessions/<int:pk>/end/", SessionEndView.as_view(), name="session-end"),
]
