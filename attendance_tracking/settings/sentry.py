"""Sentry configuration helpers used by production deployments."""

from __future__ import annotations

import logging
import os
from collections.abc import MutableMapping
from typing import Any

from django.core.exceptions import ImproperlyConfigured

import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from . import base as base_settings

__all__ = ["initialize_sentry"]

_SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "set-cookie"})

# Raw coordinates identify where a student is; strip them from captured requests.
_SENSITIVE_BODY_FIELDS = frozenset({"latitude", "longitude", "accuracy"})


def _filter_fields(values: MutableMapping[str, Any], fields: frozenset[str]) -> None:
    for field in fields & values.keys():
        values[field] = "[Filtered]"


def _before_send_factory(send_default_pii: bool):
    def _before_send(event: dict[str, Any], _hint: object | None) -> dict[str, Any]:
        request = event.get("request")
        if isinstance(request, dict):
            for key, fields in (("headers", _SENSITIVE_HEADERS), ("data", _SENSITIVE_BODY_FIELDS)):
                if isinstance(request.get(key), dict):
                    _filter_fields(request[key], fields)
        if not send_default_pii:
            event.pop("user", None)
        return event

    return _before_send


def initialize_sentry() -> None:
    """Initialise Sentry SDK when a DSN is supplied via the environment."""

    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return

    traces_sample_rate = base_settings._get_float_env("SENTRY_TRACES_SAMPLE_RATE", default=0.0, minimum=0.0)
    if traces_sample_rate > 1.0:
        raise ImproperlyConfigured("SENTRY_TRACES_SAMPLE_RATE must be between 0.0 and 1.0 when provided.")
    send_default_pii = base_settings._get_bool_env("SENTRY_SEND_DEFAULT_PII", default=False)

    # Imported here so settings modules load without touching the celery package.
    from sentry_sdk.integrations.celery import CeleryIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=os.environ.get("SENTRY_ENVIRONMENT", "production"),
        integrations=[
            DjangoIntegration(transaction_style="url"),
            LoggingIntegration(level=None, event_level=logging.ERROR),
            CeleryIntegration(),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=send_default_pii,
        before_send=_before_send_factory(send_default_pii),
    )
