"""
Django settings for the attendance tracking project.

This file contains the configuration for the Django project, including database settings,
installed applications, middleware, and the location verification policy constants.
It is configured to read sensitive values from environment variables for security.
"""

import os
import sys
import warnings
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any

from django.core.exceptions import ImproperlyConfigured

import dj_database_url

# Define the project's base directory.
# `BASE_DIR` points to the root of the Django project.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# --- Environment Helpers ---


def _get_bool_env(var_name: str, default: bool = False) -> bool:
    """Return a boolean from an environment variable."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default
    return raw_value.lower() in {"1", "true", "yes", "on"}


def _parse_int_env(var_name: str, default: int, *, minimum: int | None = None) -> int:
    """Return an integer from the environment, enforcing an optional minimum."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = int(raw_value)
    except ValueError as exc:  # pragma: no cover
        raise ImproperlyConfigured(f"{var_name} must be an integer if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")

    return value


def _get_float_env(
    var_name: str,
    default: float,
    *,
    minimum: float | None = None,
) -> float:
    """Return a float from the environment with optional lower bound enforcement."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:  # pragma: no cover
        raise ImproperlyConfigured(f"{var_name} must be a float if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")

    return value


# Detect if we're running tests
TESTING = "test" in sys.argv or (len(sys.argv) > 0 and "pytest" in sys.argv[0])

DEFAULT_SECRET_KEY = "a-secure-default-key-for-development-only"

# Never run with debug mode turned on in a production environment.
DEBUG = _get_bool_env("DJANGO_DEBUG", default=not TESTING)

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", DEFAULT_SECRET_KEY)
if SECRET_KEY == DEFAULT_SECRET_KEY and not DEBUG and not TESTING:
    raise ImproperlyConfigured(
        "DJANGO_SECRET_KEY must be set to a secure value when DJANGO_DEBUG is not enabled."
    )

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

LOCALHOST_ALIASES: tuple[str, ...] = ("localhost", "127.0.0.1", "[::1]", "testserver")


def _resolve_allowed_hosts(
    *,
    default_allowed_hosts: Sequence[str],
    require_explicit_hosts: bool,
) -> list[str]:
    """Return the allowed host list based on deployment defaults."""

    allowed_hosts_env = os.environ.get("DJANGO_ALLOWED_HOSTS")
    if allowed_hosts_env:
        return [host.strip() for host in allowed_hosts_env.split(",") if host.strip()]

    if require_explicit_hosts:
        raise ImproperlyConfigured(
            "DJANGO_ALLOWED_HOSTS must be provided (comma separated) when secure defaults are enforced."
        )

    return list(default_allowed_hosts)


def configure_environment(
    *,
    secure_defaults: bool,
    default_allowed_hosts: Sequence[str],
    require_allowed_hosts: bool,
) -> None:
    """Populate security-sensitive settings for the active environment."""

    global ALLOWED_HOSTS
    global SECURE_SSL_REDIRECT
    global SECURE_HSTS_SECONDS
    global SESSION_COOKIE_SECURE
    global CSRF_COOKIE_SECURE

    ALLOWED_HOSTS = _resolve_allowed_hosts(
        default_allowed_hosts=default_allowed_hosts,
        require_explicit_hosts=require_allowed_hosts,
    )

    SECURE_SSL_REDIRECT = _get_bool_env("DJANGO_SECURE_SSL_REDIRECT", default=secure_defaults)
    SECURE_HSTS_SECONDS = _parse_int_env(
        "DJANGO_SECURE_HSTS_SECONDS",
        default=3600 if secure_defaults else 0,
        minimum=0,
    )
    SESSION_COOKIE_SECURE = _get_bool_env("DJANGO_SESSION_COOKIE_SECURE", default=secure_defaults)
    CSRF_COOKIE_SECURE = _get_bool_env("DJANGO_CSRF_COOKIE_SECURE", default=secure_defaults)

    require_database_ssl = _get_bool_env("DATABASE_SSL_REQUIRE", default=secure_defaults)
    db_options = DATABASES["default"].setdefault("OPTIONS", {})
    if require_database_ssl:
        db_options["sslmode"] = os.environ.get("DATABASE_SSLMODE", "require")
    else:
        db_options.pop("sslmode", None)


# --- Application Configuration ---

INSTALLED_APPS = [
    # Custom applications for this project
    "attendance.apps.AttendanceConfig",
    "tracking.apps.TrackingConfig",
    # Third-party packages
    "rest_framework",
    # Core Django applications
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

# The root URL configuration module for the project.
ROOT_URLCONF = "attendance_tracking.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

# WSGI application entry point for production servers.
WSGI_APPLICATION = "attendance_tracking.wsgi.application"


# --- Database Configuration ---
# https://docs.djangoproject.com/en/5.0/ref/settings/#databases

default_db_url = os.environ.get("DATABASE_URL", f"sqlite:///{(BASE_DIR / 'db.sqlite3').as_posix()}")

conn_max_age = _parse_int_env("DATABASE_CONN_MAX_AGE", 0, minimum=0)

database_config = dj_database_url.parse(default_db_url, conn_max_age=conn_max_age)

DATABASES = {
    "default": database_config,
}


def build_postgres_database_config() -> dict[str, Any]:
    """Return a PostgreSQL configuration derived from discrete environment variables."""

    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "attendance"),
        "USER": os.environ.get("DB_USER", "attendance"),
        "PASSWORD": os.environ.get("DB_PASSWORD", "attendance"),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
        "CONN_MAX_AGE": _parse_int_env("DB_CONN_MAX_AGE", 600, minimum=0),
    }


configure_environment(
    secure_defaults=not (DEBUG or TESTING),
    default_allowed_hosts=LOCALHOST_ALIASES,
    require_allowed_hosts=not (DEBUG or TESTING),
)


# --- Password Validation ---
# https://docs.djangoproject.com/en/5.0/ref/settings/#auth-password-validators

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]


# --- Internationalization ---
# https://docs.djangoproject.com/en/5.0/topics/i18n/

LANGUAGE_CODE = "en-us"
TIME_ZONE = "Asia/Seoul"
USE_I18N = True
USE_TZ = True  # Enable timezone-aware datetimes


# --- Static Files Configuration ---

STATIC_URL = "/static/"
STATIC_ROOT = Path(os.environ.get("DJANGO_STATIC_ROOT", BASE_DIR / "staticfiles"))

# --- Model Field Configuration ---

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# --- REST API ---

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(
        minutes=_parse_int_env("JWT_ACCESS_TOKEN_MINUTES", 30, minimum=1)
    ),
    "REFRESH_TOKEN_LIFETIME": timedelta(
        days=_parse_int_env("JWT_REFRESH_TOKEN_DAYS", 1, minimum=1)
    ),
}

# --- Logging ---

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "standard"},
    },
    "loggers": {
        "attendance": {"handlers": ["console"], "level": os.environ.get("ATTENDANCE_LOG_LEVEL", "INFO")},
        "tracking": {"handlers": ["console"], "level": os.environ.get("ATTENDANCE_LOG_LEVEL", "INFO")},
    },
}

# --- Location Verification Policy ---

# Heartbeats reporting a GPS accuracy worse than this are treated as "no signal":
# they are neither evaluated nor written to the location log.
ATTENDANCE_ACCURACY_SKIP_THRESHOLD_METERS = _get_float_env(
    "ATTENDANCE_ACCURACY_SKIP_THRESHOLD_METERS",
    default=100.0,
    minimum=0.0,
)

# A GPS fix at least this accurate snaps the fused position and resets PDR drift.
ATTENDANCE_RECALIBRATION_ACCURACY_METERS = _get_float_env(
    "ATTENDANCE_RECALIBRATION_ACCURACY_METERS",
    default=40.0,
    minimum=0.0,
)

ATTENDANCE_SESSION_AUTO_END_HOURS = _get_float_env(
    "ATTENDANCE_SESSION_AUTO_END_HOURS",
    default=2.0,
    minimum=0.0,
)

# Early-leave detection inspects the most recent VIOLATION_WINDOW log rows and
# requires VIOLATION_THRESHOLD consecutive accurate out-of-zone readings.
ATTENDANCE_VIOLATION_WINDOW = _parse_int_env("ATTENDANCE_VIOLATION_WINDOW", 4, minimum=1)
ATTENDANCE_VIOLATION_THRESHOLD = _parse_int_env("ATTENDANCE_VIOLATION_THRESHOLD", 3, minimum=1)
if ATTENDANCE_VIOLATION_THRESHOLD > ATTENDANCE_VIOLATION_WINDOW:
    raise ImproperlyConfigured(
        "ATTENDANCE_VIOLATION_THRESHOLD must not exceed ATTENDANCE_VIOLATION_WINDOW."
    )

ATTENDANCE_DEFAULT_GEOFENCE_RADIUS_METERS = _get_float_env(
    "ATTENDANCE_DEFAULT_GEOFENCE_RADIUS_METERS",
    default=100.0,
    minimum=0.0,
)

ATTENDANCE_FOREGROUND_INTERVAL_SECONDS = _get_float_env(
    "ATTENDANCE_FOREGROUND_INTERVAL_SECONDS",
    default=30.0,
    minimum=1.0,
)
ATTENDANCE_BACKGROUND_INTERVAL_SECONDS = _get_float_env(
    "ATTENDANCE_BACKGROUND_INTERVAL_SECONDS",
    default=60.0,
    minimum=1.0,
)

# Optional periodic sweep for sessions nobody touches after they go overdue.
# Zero keeps auto-ending purely lazy (heartbeats and status reads).
ATTENDANCE_AUTO_END_SWEEP_SECONDS = _parse_int_env(
    "ATTENDANCE_AUTO_END_SWEEP_SECONDS",
    default=0,
    minimum=0,
)

CELERY_BEAT_SCHEDULE: dict[str, dict[str, Any]] = {}
if ATTENDANCE_AUTO_END_SWEEP_SECONDS:
    CELERY_BEAT_SCHEDULE["end-overdue-sessions"] = {
        "task": "tracking.tasks.end_overdue_sessions",
        "schedule": ATTENDANCE_AUTO_END_SWEEP_SECONDS,
        "kwargs": {},
    }
elif os.environ.get("CELERY_BEAT_ENABLED") and _get_bool_env("CELERY_BEAT_ENABLED"):
    warnings.warn(
        "CELERY_BEAT_ENABLED is set but ATTENDANCE_AUTO_END_SWEEP_SECONDS is 0; "
        "no periodic tasks will be scheduled.",
        stacklevel=1,
    )
