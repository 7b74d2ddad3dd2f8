from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


AUDIT_ACTIONS = ("create", "update", "delete", "status_change")


class AuditEvent(db.Model):
    """
    Append-only before/after trail of engine writes.

    Written after the business transaction commits, in its own transaction, so
    a failed audit write never undoes the change it describes.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(16), nullable=False)
    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)
    actor_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "before": self.before,
            "after": self.after,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }
