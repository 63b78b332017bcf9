from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z, utcnow


KIND_INFO = "info"
KIND_SUCCESS = "success"
KIND_WARNING = "warning"
KIND_ERROR = "error"
VALID_NOTIFICATION_KINDS = {KIND_INFO, KIND_SUCCESS, KIND_WARNING, KIND_ERROR}


class Notification(db.Model):
    """
    Delivered notification, persisted so a client that was offline can
    fetch it later via GET /notifications.

    Written after the ledger commit it describes; never part of it.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False, default=KIND_INFO)
    message = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.kind,
            "message": self.message,
            "read": self.read,
            "createdAt": to_utc_z(self.created_at),
        }
