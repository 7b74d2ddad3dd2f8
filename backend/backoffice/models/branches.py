from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


BRANCH_KINDS = ("store", "site", "warehouse", "admin")


class Branch(db.Model):
    """
    A boutique branch (physical store, e-commerce site, warehouse or admin unit).

    Branches partition daily cash sessions: at most one session per branch may
    be open on a given calendar day.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    kind = db.Column(db.String(16), nullable=False, default="store")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
