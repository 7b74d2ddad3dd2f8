# Overview: Notification collaborator; outbound delivery lives outside the engine.

from __future__ import annotations

import logging
from typing import Protocol


logger = logging.getLogger(__name__)

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
CASH_SESSION_APPROVED = "cash_session.approved"
CASH_SESSION_REJECTED = "cash_session.rejected"


class Notifier(Protocol):
    def notify(self, event_type: str, payload: dict) -> None:
        ...


class LogNotifier:
    """Default notifier: logs the event. Email/push/webhook delivery plugs in here."""

    def notify(self, event_type: str, payload: dict) -> None:
        logger.info("Notification %s", event_type, extra={"event_type": event_type, "payload": payload})


def notify_safely(notifier: Notifier, event_type: str, payload: dict) -> None:
    """Fire-and-forget: delivery failures are logged, never raised."""
    try:
        notifier.notify(event_type, payload)
    except Exception:
        logger.exception("Notification %s failed", event_type)
