from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z, utcnow, within_window


PROMO_AUTOMATIC = "automatic"
PROMO_ONE_TIME = "one-time"
VALID_PROMO_TYPES = {PROMO_AUTOMATIC, PROMO_ONE_TIME}


# "usedBy": links a customer to each one-time promotion they have consumed.
promotion_usages = db.Table(
    "promotion_usages",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id"), primary_key=True),
)


class Promotion(db.Model):
    """
    Point-bonus rule applied to purchases.

    automatic: applies to every qualifying purchase inside [start_time, end_time].
    one-time: applies only when requested, at most once per user (usedBy).

    rate is a fractional bonus per dollar (0.01 = 1 extra point per dollar);
    points is a flat bonus. Both are gated by min_spending when set.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.Index("ix_promotions_type_window", "type", "start_time", "end_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(16), nullable=False)

    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    min_spending = db.Column(db.Float, nullable=True)
    rate = db.Column(db.Float, nullable=True)
    points = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    used_by = db.relationship(
        "User",
        secondary=promotion_usages,
        lazy="dynamic",
        backref=db.backref("used_promotions", lazy="dynamic"),
    )

    def is_active(self, now) -> bool:
        return within_window(self.start_time, self.end_time, now)

    def to_dict(self, include_start: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "endTime": to_utc_z(self.end_time),
            "minSpending": self.min_spending,
            "rate": self.rate,
            "points": self.points,
        }
        if include_start:
            data["startTime"] = to_utc_z(self.start_time)
        return data
