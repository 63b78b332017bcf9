# Overview: Service-layer operations for users; registration, profile and flag/role management.

from __future__ import annotations

import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import Conflict, Forbidden, NotFound
from ..models import PasswordReset, Promotion, User, promotion_usages
from ..models.promotions import PROMO_ONE_TIME
from ..models.users import ROLE_CASHIER, ROLE_MANAGER, ROLE_REGULAR, ROLE_SUPERUSER
from .auth_service import hash_password, issue_reset_token, verify_password


# Roles a manager (but not a superuser) may assign
MANAGER_ASSIGNABLE_ROLES = {ROLE_CASHIER, ROLE_REGULAR}


def _duplicate_field(utorid: str, email: str) -> str | None:
    if db.session.query(User.id).filter_by(utorid=utorid).first():
        return "utorid"
    if db.session.query(User.id).filter_by(email=email).first():
        return "email"
    return None


def register_user(utorid: str, name: str, email: str) -> tuple[User, PasswordReset]:
    """
    Create an unverified account plus its activation token.

    The account gets an unguessable temporary password; the user sets a real
    one by consuming the activation token via the password-reset flow.
    """
    field = _duplicate_field(utorid, email)
    if field:
        raise Conflict(f"User with that {field} already exists")

    user = User(
        utorid=utorid,
        name=name,
        email=email,
        password_hash=hash_password(secrets.token_urlsafe(24)),
        verified=False,
    )
    db.session.add(user)
    try:
        db.session.flush()
        ttl = timedelta(days=current_app.config["ACTIVATION_TOKEN_TTL_DAYS"])
        reset = issue_reset_token(user, ttl)
        db.session.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration
        db.session.rollback()
        raise Conflict("User with that utorid or email already exists")
    return user, reset


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


def list_users(
    *,
    name: str | None = None,
    role: str | None = None,
    verified: bool | None = None,
    activated: bool | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[User]]:
    q = db.session.query(User)
    if name:
        q = q.filter(or_(User.name.contains(name), User.utorid.contains(name)))
    if role:
        q = q.filter(User.role == role)
    if verified is not None:
        q = q.filter(User.verified.is_(verified))
    if activated is not None:
        # "activated" = has logged in at least once
        q = q.filter(User.last_login.isnot(None) if activated else User.last_login.is_(None))

    count = q.count()
    users = q.order_by(User.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return count, users


def available_one_time_promotions(user_id: int) -> list[Promotion]:
    """One-time promotions the user has not consumed yet."""
    used = db.session.query(promotion_usages.c.promotion_id).filter(
        promotion_usages.c.user_id == user_id
    )
    return (
        db.session.query(Promotion)
        .filter(Promotion.type == PROMO_ONE_TIME, Promotion.id.notin_(used))
        .order_by(Promotion.id.asc())
        .all()
    )


def update_user(
    actor: User,
    user_id: int,
    *,
    email: str | None = None,
    verified: bool | None = None,
    suspicious: bool | None = None,
    role: str | None = None,
) -> tuple[User, set[str]]:
    """
    Manager-level update of another user's email, flags and role.

    Role ladder: a manager may only set cashier/regular; a superuser may set
    any role. Promoting to cashier clears the suspicious flag. `verified` can
    only be turned on (the route rejects false).

    Returns (user, names of the fields the caller asked to change).
    """
    if role is not None and not actor.has_role(ROLE_SUPERUSER):
        if not actor.has_role(ROLE_MANAGER) or role not in MANAGER_ASSIGNABLE_ROLES:
            raise Forbidden("Managers can only set roles to cashier or regular.")

    user = get_user(user_id)
    changed: set[str] = set()

    if email is not None:
        user.email = email
        changed.add("email")
    if verified is True:
        user.verified = True
        changed.add("verified")
    if suspicious is not None:
        user.suspicious = suspicious
        changed.add("suspicious")
    if role is not None:
        user.role = role
        changed.add("role")
        if role == ROLE_CASHIER:
            user.suspicious = False

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Email already in use.")

    current_app.logger.info("User %s updated by %s: %s", user.utorid, actor.utorid, sorted(changed))
    return user, changed


def update_me(user: User, *, name: str | None = None, email: str | None = None, birthday: str | None = None) -> User:
    if name is not None:
        user.name = name
    if email is not None:
        user.email = email
    if birthday is not None:
        user.birthday = birthday

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Email already in use.")
    return user


def change_password(user: User, old_password: str, new_password: str) -> None:
    if not verify_password(old_password, user.password_hash):
        raise Forbidden("Incorrect current password.")
    user.password_hash = hash_password(new_password)
    db.session.commit()
