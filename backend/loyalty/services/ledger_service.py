# Overview: Service-layer operations for the user points ledger.

from __future__ import annotations

from sqlalchemy.orm.attributes import flag_modified

from ..extensions import db
from ..errors import BadRequest, NotFound
from ..models import User
from .concurrency import lock_for_update
"""
User Ledger Invariants (authoritative)

- users.points is mutated ONLY by apply_points_delta.
- apply_points_delta is called ONLY from inside a transaction engine unit
  (services/transaction_service.py), in the same DB transaction as the
  Transaction row that explains the change.
- Balances never go below zero: a delta that would do so is rejected.
- Users are versioned rows: a concurrent unit that read a stale balance
  fails its flush with StaleDataError and is retried from a fresh read.
"""


def get_balance(user_id: int) -> int:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    return user.points


def load_user_for_update(user_id: int) -> User | None:
    """Load a user row for a balance change (row-locked where supported)."""
    return lock_for_update(db.session.query(User).filter_by(id=user_id)).first()


def load_user_by_utorid_for_update(utorid: str) -> User | None:
    return lock_for_update(db.session.query(User).filter_by(utorid=utorid)).first()


def apply_points_delta(user: User, delta: int, *, message: str = "Insufficient points.") -> int:
    """
    Apply a signed balance change to `user` within the current unit.

    Returns the new balance. Raises BadRequest if the balance would become
    negative. Does not commit.

    The row is written even for a zero delta so the version check still
    orders units that touch the same user (e.g. suspicious purchases).
    """
    new_balance = user.points + delta
    if new_balance < 0:
        raise BadRequest(message)
    user.points = new_balance
    flag_modified(user, "points")
    return new_balance
