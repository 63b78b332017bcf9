from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import BadRequest, Forbidden, NotFound
from ..models import Promotion, User, promotion_usages
from ..models.promotions import PROMO_AUTOMATIC, PROMO_ONE_TIME
from ..models.users import ROLE_MANAGER
from loyalty.time_utils import utcnow


# Fields frozen once a promotion has started; endTime freezes once it has ended.
FROZEN_AFTER_START = ("name", "description", "type", "start_time", "min_spending", "rate", "points")

# API orderBy value -> column
ORDERABLE_FIELDS = {
    "id": Promotion.id,
    "name": Promotion.name,
    "startTime": Promotion.start_time,
    "endTime": Promotion.end_time,
    "minSpending": Promotion.min_spending,
    "rate": Promotion.rate,
    "points": Promotion.points,
}

_API_NAMES = {
    "start_time": "startTime",
    "end_time": "endTime",
    "min_spending": "minSpending",
}


def get_promotion_by_id(promo_id: int) -> Promotion | None:
    return db.session.get(Promotion, promo_id)


def list_active(now=None, promo_type: str | None = None) -> list[Promotion]:
    now = now or utcnow()
    q = db.session.query(Promotion).filter(Promotion.start_time <= now, Promotion.end_time > now)
    if promo_type:
        q = q.filter(Promotion.type == promo_type)
    return q.order_by(Promotion.id.asc()).all()


def list_active_automatic(now=None) -> list[Promotion]:
    return list_active(now, PROMO_AUTOMATIC)


def has_user_used(user_id: int, promo_id: int) -> bool:
    row = (
        db.session.query(promotion_usages.c.user_id)
        .filter(
            promotion_usages.c.user_id == user_id,
            promotion_usages.c.promotion_id == promo_id,
        )
        .first()
    )
    return row is not None


def mark_used(user: User, promotions) -> None:
    """
    Record consumption of one-time promotions. Flushes but does not commit.

    Raises BadRequest if a usage row already exists, so a unit that lost a
    race to another purchase aborts instead of applying the bonus twice.
    """
    one_time = [p for p in promotions if p.type == PROMO_ONE_TIME]
    for promo in one_time:
        if has_user_used(user.id, promo.id):
            raise BadRequest(f"Promotion '{promo.name}' has already been used.")
        promo.used_by.append(user)
    if not one_time:
        return
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise BadRequest("Promotion has already been used.") from exc


def create_promotion(patch: dict) -> Promotion:
    promo = Promotion(**patch)
    db.session.add(promo)
    db.session.commit()
    return promo


def list_promotions(
    viewer: User,
    *,
    name: str | None = None,
    promo_type: str | None = None,
    started: bool | None = None,
    ended: bool | None = None,
    order_by: str | None = None,
    order: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[Promotion]]:
    """
    Role-aware promotion listing.

    Regular users and cashiers see only active promotions, minus one-time
    promotions they already used. Managers see everything and may filter by
    started/ended (never both).
    """
    if started is not None and ended is not None:
        raise BadRequest("Cannot specify both started and ended.")

    now = utcnow()
    q = db.session.query(Promotion)
    if name:
        q = q.filter(Promotion.name.contains(name))
    if promo_type:
        q = q.filter(Promotion.type == promo_type)

    if not viewer.has_role(ROLE_MANAGER):
        used = db.session.query(promotion_usages.c.promotion_id).filter(
            promotion_usages.c.user_id == viewer.id
        )
        q = q.filter(
            Promotion.start_time <= now,
            Promotion.end_time > now,
            or_(Promotion.type == PROMO_AUTOMATIC, Promotion.id.notin_(used)),
        )
    else:
        if started is not None:
            q = q.filter(Promotion.start_time <= now if started else Promotion.start_time > now)
        if ended is not None:
            q = q.filter(Promotion.end_time <= now if ended else Promotion.end_time > now)

    sort_col = ORDERABLE_FIELDS.get(order_by or "startTime")
    if sort_col is None:
        raise BadRequest(f"Cannot order by '{order_by}'.")
    sort = sort_col.desc() if order == "desc" else sort_col.asc()

    count = q.count()
    promos = q.order_by(sort, Promotion.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return count, promos


def get_promotion(viewer: User, promo_id: int) -> Promotion:
    promo = get_promotion_by_id(promo_id)
    if not promo:
        raise NotFound("Promotion not found.")
    if not viewer.has_role(ROLE_MANAGER) and not promo.is_active(utcnow()):
        raise NotFound("Promotion not found or is not active.")
    return promo


def update_promotion(promo_id: int, patch: dict) -> Promotion:
    """
    Apply a validated patch.

    After the original start time only endTime may change; after the original
    end time nothing may. New start/end times must not be in the past. Null
    values in the patch are ignored.
    """
    promo = get_promotion_by_id(promo_id)
    if not promo:
        raise NotFound("Promotion not found.")

    now = utcnow()
    if promo.start_time <= now:
        for key in FROZEN_AFTER_START:
            if key in patch:
                field = _API_NAMES.get(key, key)
                raise BadRequest(f"Cannot update '{field}' after the promotion's original start time.")
    if promo.end_time <= now and "end_time" in patch:
        raise BadRequest("Cannot update 'endTime' after the promotion's original end time.")

    for key in ("start_time", "end_time"):
        if patch.get(key) is not None and patch[key] < now:
            raise BadRequest("start time or end time (or both) is in the past.")

    new_start = patch.get("start_time") or promo.start_time
    new_end = patch.get("end_time") or promo.end_time
    if new_end <= new_start:
        raise BadRequest("endTime must be after startTime.")

    for key, value in patch.items():
        if value is not None:
            setattr(promo, key, value)

    db.session.commit()
    return promo


def delete_promotion(promo_id: int) -> None:
    promo = get_promotion_by_id(promo_id)
    if not promo:
        raise NotFound("Promotion not found.")
    if promo.start_time <= utcnow():
        raise Forbidden("Cannot delete a promotion that has already started.")
    db.session.delete(promo)
    db.session.commit()
