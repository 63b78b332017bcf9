# Overview: Service-layer operations for events; organizers, guests, field locks and the point budget.

"""
Event Point-Budget Manager

- A user is never both organizer and guest of the same event.
- Organizers and guests are added only while the event has not ended.
- points_awarded only grows, only through event transactions (see
  transaction_service), and never exceeds points_allocated. Allocation can
  be lowered but not below what was already awarded.
- published flips false -> true once.
"""

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..errors import BadRequest, Forbidden, Gone, NotFound
from ..models import Event, EventGuest, EventOrganizer, User
from ..models.users import ROLE_MANAGER
from .concurrency import atomic_unit, lock_for_update
from loyalty.time_utils import utcnow


# Frozen once the event has started (endTime freezes once it has ended)
FROZEN_AFTER_START = ("name", "description", "location", "start_time", "capacity")

_API_NAMES = {"start_time": "startTime", "end_time": "endTime", "points_allocated": "points"}


def _get_event(event_id: int) -> Event:
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFound("Event not found.")
    return event


def _lock_event(event_id: int) -> Event:
    event = lock_for_update(db.session.query(Event).filter_by(id=event_id)).first()
    if not event:
        raise NotFound("Event not found.")
    return event


def _get_user_by_utorid(utorid: str) -> User:
    user = db.session.query(User).filter_by(utorid=utorid).first()
    if not user:
        raise NotFound("User not found.")
    return user


def _has_ended(event: Event, now) -> bool:
    return event.end_time <= now


def is_organizer(event_id: int, user_id: int) -> bool:
    return db.session.query(EventOrganizer.id).filter_by(event_id=event_id, user_id=user_id).first() is not None


def is_guest(event_id: int, user_id: int) -> bool:
    return db.session.query(EventGuest.id).filter_by(event_id=event_id, user_id=user_id).first() is not None


def can_manage(actor: User, event_id: int) -> bool:
    """Manager+ or an organizer of this event."""
    return actor.has_role(ROLE_MANAGER) or is_organizer(event_id, actor.id)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def create_event(creator: User, patch: dict) -> Event:
    """Create an unpublished event; the creator becomes its first organizer."""
    now = utcnow()
    if patch["start_time"] < now:
        raise BadRequest("startTime must not be in the past.")
    if patch["end_time"] <= patch["start_time"]:
        raise BadRequest("endTime must be after startTime.")

    event = Event(**patch)
    event.published = False
    event.points_awarded = 0
    event.organizers.append(EventOrganizer(user_id=creator.id))
    db.session.add(event)
    db.session.commit()
    return event


def list_events(
    viewer: User,
    *,
    name: str | None = None,
    location: str | None = None,
    started: bool | None = None,
    ended: bool | None = None,
    show_full: bool = False,
    published: bool | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[Event]]:
    if started is not None and ended is not None:
        raise BadRequest("Cannot specify both started and ended.")

    now = utcnow()
    q = db.session.query(Event)
    if name:
        q = q.filter(Event.name.contains(name))
    if location:
        q = q.filter(Event.location.contains(location))
    if started is not None:
        q = q.filter(Event.start_time <= now if started else Event.start_time > now)
    if ended is not None:
        q = q.filter(Event.end_time <= now if ended else Event.end_time > now)

    if not viewer.has_role(ROLE_MANAGER):
        q = q.filter(Event.published.is_(True))
    elif published is not None:
        q = q.filter(Event.published.is_(published))

    if not show_full:
        guest_count = (
            db.session.query(func.count(EventGuest.id))
            .filter(EventGuest.event_id == Event.id)
            .scalar_subquery()
        )
        q = q.filter(or_(Event.capacity.is_(None), guest_count < Event.capacity))

    count = q.count()
    events = (
        q.order_by(Event.start_time.asc(), Event.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return count, events


def get_event(viewer: User, event_id: int) -> tuple[Event, bool]:
    """
    Returns (event, full_view). Organizers and managers get the full view
    and can see unpublished events; everyone else only sees published ones.
    """
    event = _get_event(event_id)
    if can_manage(viewer, event_id):
        return event, True
    if not event.published:
        raise NotFound("Event not found or is not published.")
    return event, False


def update_event(actor: User, event_id: int, patch: dict) -> tuple[Event, set[str]]:
    """
    Apply a validated patch under the event field locks.

    Returns (event, column keys that changed).
    """
    def _apply():
        event = _lock_event(event_id)
        actor_is_manager = actor.has_role(ROLE_MANAGER)
        if not actor_is_manager and not is_organizer(event_id, actor.id):
            raise Forbidden("You must be a manager or organizer for this event to update it.")

        if not actor_is_manager:
            if patch.get("points_allocated") is not None or patch.get("published") is not None:
                raise Forbidden("Organizers cannot update event points or published status.")

        now = utcnow()
        if event.start_time <= now:
            for key in FROZEN_AFTER_START:
                if patch.get(key) is not None:
                    field = _API_NAMES.get(key, key)
                    raise BadRequest(f"Cannot update '{field}' after the event's original start time.")
        if _has_ended(event, now) and "end_time" in patch:
            raise BadRequest("Cannot update 'endTime' after the event's original end time.")

        if patch.get("start_time") is not None and patch["start_time"] < now:
            raise BadRequest("startTime must not be in the past.")
        if patch.get("end_time") is not None and patch["end_time"] < now:
            raise BadRequest("endTime must not be in the past.")

        new_start = patch.get("start_time") or event.start_time
        new_end = patch.get("end_time") or event.end_time
        if new_end <= new_start:
            raise BadRequest("endTime must be after startTime.")

        changes: dict = {}

        if "capacity" in patch:
            capacity = patch["capacity"]
            if capacity is None:
                if event.capacity is not None:
                    raise BadRequest("Cannot change a limited capacity event to unlimited.")
            else:
                if event.num_guests > capacity:
                    raise BadRequest("New capacity is less than the number of confirmed guests.")
                changes["capacity"] = capacity

        if patch.get("points_allocated") is not None:
            if patch["points_allocated"] < event.points_awarded:
                raise BadRequest("Total points cannot be reduced below the amount already awarded.")
            changes["points_allocated"] = patch["points_allocated"]

        if "published" in patch:
            if patch["published"] is False:
                raise BadRequest("Published status can only be set to true.")
            if patch["published"] is True:
                changes["published"] = True

        for key in ("name", "description", "location", "start_time", "end_time"):
            if patch.get(key) is not None:
                changes[key] = patch[key]

        for key, value in changes.items():
            setattr(event, key, value)
        return event, set(changes)

    return atomic_unit(_apply)


def delete_event(event_id: int) -> None:
    event = _get_event(event_id)
    if event.published:
        raise BadRequest("Cannot delete an event that has already been published.")
    if event.points_awarded > 0:
        raise BadRequest("Cannot delete an event that has awarded points.")
    db.session.delete(event)
    db.session.commit()


# ---------------------------------------------------------------------------
# Organizers
# ---------------------------------------------------------------------------

def add_organizer(event_id: int, utorid: str) -> Event:
    user = _get_user_by_utorid(utorid)

    def _add():
        event = _lock_event(event_id)
        if _has_ended(event, utcnow()):
            raise Gone("Cannot add organizers to an event that has ended.")
        if is_guest(event_id, user.id):
            raise BadRequest("User is already a guest. Remove them as a guest first.")
        if is_organizer(event_id, user.id):
            raise BadRequest("User is already an organizer for this event.")
        event.organizers.append(EventOrganizer(user_id=user.id))
        return event

    return atomic_unit(_add)


def remove_organizer(event_id: int, user_id: int) -> None:
    _get_event(event_id)
    link = db.session.query(EventOrganizer).filter_by(event_id=event_id, user_id=user_id).first()
    if not link:
        raise NotFound("Organizer not found for this event.")
    db.session.delete(link)
    db.session.commit()


# ---------------------------------------------------------------------------
# Guests
# ---------------------------------------------------------------------------

def _add_guest_checked(event: Event, user: User, *, already_message: str) -> EventGuest:
    """Shared guest-admission checks. Caller holds the unit."""
    if _has_ended(event, utcnow()):
        raise Gone("Event has already ended.")
    if event.is_full():
        raise Gone("Event is full.")
    if is_guest(event.id, user.id):
        raise BadRequest(already_message)
    guest = EventGuest(user_id=user.id)
    event.guests.append(guest)
    return guest


def add_guest(actor: User, event_id: int, utorid: str) -> tuple[Event, User]:
    """
    Manager+ may add guests to any event; an organizer only to a published
    event they organize.
    """
    _get_event(event_id)
    user = _get_user_by_utorid(utorid)

    actor_is_manager = actor.has_role(ROLE_MANAGER)
    if not actor_is_manager and not is_organizer(event_id, actor.id):
        raise Forbidden("You must be a manager or organizer for this event.")

    def _add():
        event = _lock_event(event_id)
        if not actor_is_manager and not event.published:
            raise NotFound("Event is not visible to the organizer yet.")
        if is_organizer(event_id, user.id):
            raise BadRequest("User is an organizer. Remove them as an organizer first.")
        _add_guest_checked(event, user, already_message="User is already a guest at this event.")
        return event

    return atomic_unit(_add), user


def remove_guest(event_id: int, user_id: int) -> None:
    _get_event(event_id)
    link = db.session.query(EventGuest).filter_by(event_id=event_id, user_id=user_id).first()
    if not link:
        raise NotFound("Guest not found for this event.")
    db.session.delete(link)
    db.session.commit()


def rsvp(user: User, event_id: int) -> Event:
    """Add `user` to the guest list of a published event."""
    def _add():
        event = _lock_event(event_id)
        if not event.published:
            raise NotFound("Event not found.")
        if is_organizer(event_id, user.id):
            raise BadRequest("Organizers cannot be guests at their own event.")
        _add_guest_checked(event, user, already_message="You are already on the guest list.")
        return event

    return atomic_unit(_add)


def unrsvp(user: User, event_id: int) -> None:
    event = _get_event(event_id)
    if _has_ended(event, utcnow()):
        raise Gone("Event has already ended.")
    link = db.session.query(EventGuest).filter_by(event_id=event_id, user_id=user.id).first()
    if not link:
        raise NotFound("You did not RSVP to this event.")
    db.session.delete(link)
    db.session.commit()


def guest_user_ids(event: Event) -> list[int]:
    return [g.user_id for g in event.guests]
