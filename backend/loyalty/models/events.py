from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z, utcnow


class Event(db.Model):
    """
    Organizer-run event with a bounded points budget.

    POINT BUDGET:
    - points_allocated: total the event may distribute
    - points_awarded: consumed so far; only increases, via event transactions,
      and never exceeds points_allocated

    published flips false -> true only. Deletable only while unpublished.
    """
    __tablename__ = "events"
    __table_args__ = (
        db.CheckConstraint("points_awarded <= points_allocated", name="ck_events_budget"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    location = db.Column(db.String(255), nullable=False)

    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)
    capacity = db.Column(db.Integer, nullable=True)  # NULL = unlimited

    points_allocated = db.Column(db.Integer, nullable=False, default=0)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    published = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    organizers = db.relationship(
        "EventOrganizer", backref="event", lazy=True, cascade="all, delete-orphan"
    )
    guests = db.relationship(
        "EventGuest", backref="event", lazy=True, cascade="all, delete-orphan"
    )

    @property
    def points_remaining(self) -> int:
        return self.points_allocated - self.points_awarded

    @property
    def num_guests(self) -> int:
        return len(self.guests)

    def is_full(self) -> bool:
        return self.capacity is not None and self.num_guests >= self.capacity

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "startTime": to_utc_z(self.start_time),
            "endTime": to_utc_z(self.end_time),
            "capacity": self.capacity,
            "organizers": [o.user.to_summary() for o in self.organizers],
            "numGuests": self.num_guests,
        }

    def to_dict(self) -> dict:
        data = self.to_public_dict()
        data.update({
            "pointsRemain": self.points_remaining,
            "pointsAwarded": self.points_awarded,
            "published": self.published,
            "guests": [g.user.to_summary() for g in self.guests],
        })
        return data


class EventOrganizer(db.Model):
    __tablename__ = "event_organizers"
    __table_args__ = (
        db.UniqueConstraint("event_id", "user_id", name="uq_event_organizers_event_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    user = db.relationship("User", backref=db.backref("organized_events", lazy=True))


class EventGuest(db.Model):
    __tablename__ = "event_guests"
    __table_args__ = (
        db.UniqueConstraint("event_id", "user_id", name="uq_event_guests_event_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    user = db.relationship("User", backref=db.backref("guest_events", lazy=True))
