# Overview: Service-layer operations for auth; password hashing, bearer tokens and reset tokens.

"""
Authentication Service

Every ledger action is attributed to an authenticated user. Passwords are
hashed with bcrypt; bearer tokens are HS256 JWTs carrying {id, utorid, role}.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Strength rules live in validation.validate_password
- Reset tokens are single-use; issuing a new one expires prior active ones
- Account activation reuses the reset-token mechanism with a longer TTL
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta

import bcrypt
import jwt
from flask import current_app

from ..extensions import db
from ..errors import Gone, NotFound, Unauthorized
from ..models import PasswordReset, User
from .concurrency import atomic_unit, commit_with_retry, lock_for_update
from loyalty.time_utils import utcnow


JWT_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    """Hash password using bcrypt. Strength is validated by the caller."""
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() compares in constant time.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash (e.g. an account seeded without one)
        return False


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------

def issue_token(user: User) -> tuple[str, datetime]:
    """Sign a bearer token for `user`. Returns (token, expires_at)."""
    expires_at = utcnow() + timedelta(days=current_app.config["TOKEN_TTL_DAYS"])
    payload = {
        "id": user.id,
        "utorid": user.utorid,
        "role": user.role,
        "exp": expires_at,
    }
    token = jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm=JWT_ALGORITHM)
    return token, expires_at


def verify_token(token: str) -> dict | None:
    """Return the token claims, or None if the token is invalid or expired."""
    try:
        return jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None


def authenticate(utorid: str, password: str) -> User:
    """
    Verify credentials and record the login.

    Raises Unauthorized for an unknown utorid or a wrong password; the two
    cases are indistinguishable to the caller.
    """
    user = db.session.query(User).filter_by(utorid=utorid).first()
    if not user or not verify_password(password, user.password_hash):
        raise Unauthorized("Invalid credentials.")

    user.last_login = utcnow()
    commit_with_retry()
    return user


# ---------------------------------------------------------------------------
# Password reset / activation tokens
# ---------------------------------------------------------------------------

def _expire_active_tokens(user_id: int, now: datetime) -> None:
    active = (
        db.session.query(PasswordReset)
        .filter(
            PasswordReset.user_id == user_id,
            PasswordReset.consumed_at.is_(None),
            PasswordReset.expires_at > now,
        )
        .all()
    )
    for reset in active:
        reset.expires_at = now


def issue_reset_token(user: User, ttl: timedelta) -> PasswordReset:
    """
    Create a fresh reset token for `user`, expiring any active ones.

    Does not commit; the caller owns the transaction.
    """
    now = utcnow()
    _expire_active_tokens(user.id, now)
    reset = PasswordReset(
        token=secrets.token_hex(32),
        user_id=user.id,
        expires_at=now + ttl,
    )
    db.session.add(reset)
    return reset


def request_reset(utorid: str, email: str) -> PasswordReset:
    user = db.session.query(User).filter_by(utorid=utorid, email=email).first()
    if not user:
        raise NotFound("User not found.")

    ttl = timedelta(minutes=current_app.config["RESET_TOKEN_TTL_MINUTES"])
    reset = issue_reset_token(user, ttl)
    db.session.commit()
    return reset


def perform_reset(token: str, utorid: str, new_password: str) -> User:
    """
    Consume a reset token and set the new password in one unit.

    NotFound: unknown token. Gone: expired or already consumed.
    Unauthorized: token belongs to another utorid.
    """
    def _check_and_consume():
        reset = lock_for_update(db.session.query(PasswordReset).filter_by(token=token)).first()
        if not reset:
            raise NotFound("Reset token not found.")

        now = utcnow()
        if reset.consumed_at is not None:
            raise Gone("Reset token has already been used.")
        if reset.expires_at <= now:
            raise Gone("Reset token has expired.")
        if reset.user.utorid != utorid:
            raise Unauthorized("Token does not match utorid.")

        reset.user.password_hash = hash_password(new_password)
        reset.consumed_at = now
        return reset.user

    return atomic_unit(_check_and_consume)
