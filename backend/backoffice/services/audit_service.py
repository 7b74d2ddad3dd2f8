# Overview: Audit collaborator; before/after records of engine writes.

from __future__ import annotations

import logging

from ..models import AuditEvent
from ..models.audit import AUDIT_ACTIONS
from backoffice.time_utils import utcnow


logger = logging.getLogger(__name__)


class AuditTrail:
    """
    Append-only audit writer.

    record() is meant to run as an after-commit callback: it writes in its own
    transaction and never raises, so a broken audit store cannot roll back or
    fail the business operation it describes.
    """

    def __init__(self, session, *, clock=utcnow):
        self.session = session
        self.clock = clock

    def record(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        before: dict | None = None,
        after: dict | None = None,
        actor_id: int | None = None,
    ) -> AuditEvent | None:
        if action not in AUDIT_ACTIONS:
            logger.error("Unknown audit action %r for %s %s", action, entity_type, entity_id)
            return None
        try:
            event = AuditEvent(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                before=before,
                after=after,
                actor_id=actor_id,
                created_at=self.clock(),
            )
            self.session.add(event)
            self.session.commit()
            return event
        except Exception:
            self.session.rollback()
            logger.exception(
                "Audit write failed",
                extra={"entity_type": entity_type, "entity_id": entity_id, "action": action},
            )
            return None
