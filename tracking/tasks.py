"""Background jobs for the session lifecycle."""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task

from .lifecycle import SessionLifecycleManager

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="tracking.tasks.end_overdue_sessions")
def end_overdue_sessions(self) -> dict[str, Any]:
    """End every open session that has run past its window.

    Heartbeats and status reads already end sessions lazily; this sweep only
    catches sessions nobody touches after class.
    """

    try:
        results = SessionLifecycleManager().end_overdue_sessions()
    except Exception:
        logger.exception("Overdue session sweep failed.")
        raise

    if results:
        logger.info("Overdue session sweep ended %d session(s).", len(results))
    return {
        "ended": len(results),
        "session_ids": [result.session.pk for result in results],
    }
