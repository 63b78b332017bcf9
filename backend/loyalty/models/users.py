from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z, utcnow


ROLE_REGULAR = "regular"
ROLE_CASHIER = "cashier"
ROLE_MANAGER = "manager"
ROLE_SUPERUSER = "superuser"

# Strictly ordered privilege ladder
ROLE_LADDER = (ROLE_REGULAR, ROLE_CASHIER, ROLE_MANAGER, ROLE_SUPERUSER)


class User(db.Model):
    """
    A loyalty-program member, cashier, manager or superuser.

    `points` is the current balance. It is mutated only through
    ledger_service.apply_points_delta, inside a transaction engine unit.
    Users are never deleted.

    version_id gives optimistic locking on the balance row: two concurrent
    units that both read the same version cannot both commit.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Immutable, human-readable handle
    utorid = db.Column(db.String(8), nullable=False, unique=True, index=True)
    name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    birthday = db.Column(db.String(10), nullable=True)  # YYYY-MM-DD
    avatar_url = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_REGULAR, index=True)
    points = db.Column(db.Integer, nullable=False, default=0)
    verified = db.Column(db.Boolean, nullable=False, default=False)
    suspicious = db.Column(db.Boolean, nullable=False, default=False)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_login = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def has_role(self, minimum: str) -> bool:
        """True if this user's role is at or above `minimum` on the ladder."""
        return ROLE_LADDER.index(self.role) >= ROLE_LADDER.index(minimum)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "utorid": self.utorid,
            "name": self.name,
            "email": self.email,
            "birthday": self.birthday,
            "role": self.role,
            "points": self.points,
            "createdAt": to_utc_z(self.created_at),
            "lastLogin": to_utc_z(self.last_login),
            "verified": self.verified,
            "avatarUrl": self.avatar_url,
        }

    def to_cashier_dict(self) -> dict:
        return {
            "id": self.id,
            "utorid": self.utorid,
            "name": self.name,
            "points": self.points,
            "verified": self.verified,
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "utorid": self.utorid, "name": self.name}


class PasswordReset(db.Model):
    """
    Password reset / account activation token.

    At most one active (unconsumed, unexpired) token per user is meaningful:
    issuing a new one forces the expiry of prior active tokens to now.
    Consumed exactly once.
    """
    __tablename__ = "password_resets"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    expires_at = db.Column(db.DateTime, nullable=False)
    consumed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship("User", backref=db.backref("password_resets", lazy=True))

    def is_active(self, now) -> bool:
        return self.consumed_at is None and self.expires_at > now
