# Overview: Flask API routes for event operations; CRUD, organizers, guests, RSVP and point awards.

"""
Event routes.

Access:
- create / delete / organizer management / guest removal: manager+
- update / add guest / award points: manager+ or an organizer of the event
- RSVP: any authenticated user, for themselves
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import Event
from ..models.notifications import KIND_INFO, KIND_SUCCESS
from ..models.users import ROLE_MANAGER
from ..services import event_service
from ..services.notification_service import deliver
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_event,
    optional_string,
    parse_bool_arg,
    parse_pagination,
    require_fields,
    require_positive_int,
    strict_body,
    validate_payload,
    validate_utorid,
)

EVENT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name": "name",
        "description": "description",
        "location": "location",
        "startTime": "start_time",
        "endTime": "end_time",
        "capacity": "capacity",
        "points": "points_allocated",
    },
    required_on_create={"name", "description", "location", "startTime", "endTime", "points"},
)

EVENT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={**EVENT_CREATE_POLICY.writable_fields, "published": "published"},
)

events_bp = Blueprint("events", __name__, url_prefix="/events")


def _utorid_body() -> str:
    data = request.get_json(silent=True) or {}
    strict_body(data, {"utorid"})
    require_fields(data, "utorid")
    return validate_utorid(data["utorid"])


def _summary(event: Event) -> dict:
    return {"id": event.id, "name": event.name, "location": event.location}


@events_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
def create_event_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Event, payload=payload, policy=EVENT_CREATE_POLICY, partial=False)
    enforce_rules_event(patch)

    event = event_service.create_event(g.current_user, patch)
    return jsonify(event.to_dict()), 201


@events_bp.get("")
@require_auth
def list_events_route():
    page, limit = parse_pagination(request.args)
    count, events = event_service.list_events(
        g.current_user,
        name=request.args.get("name") or None,
        location=request.args.get("location") or None,
        started=parse_bool_arg(request.args, "started"),
        ended=parse_bool_arg(request.args, "ended"),
        show_full=bool(parse_bool_arg(request.args, "showFull")),
        published=parse_bool_arg(request.args, "published"),
        page=page,
        limit=limit,
    )

    full_view = g.current_user.has_role(ROLE_MANAGER)
    results = []
    for event in events:
        data = event.to_public_dict()
        if full_view:
            data.update({
                "pointsRemain": event.points_remaining,
                "pointsAwarded": event.points_awarded,
                "published": event.published,
            })
        results.append(data)
    return jsonify({"count": count, "results": results})


@events_bp.get("/<int:event_id>")
@require_auth
def get_event_route(event_id: int):
    event, full_view = event_service.get_event(g.current_user, event_id)
    return jsonify(event.to_dict() if full_view else event.to_public_dict())


@events_bp.patch("/<int:event_id>")
@require_auth
def update_event_route(event_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Event, payload=payload, policy=EVENT_UPDATE_POLICY, partial=True)
    enforce_rules_event(patch)

    event, changed = event_service.update_event(g.current_user, event_id, patch)

    body = _summary(event)
    full = event.to_dict()
    for key in changed:
        if key == "points_allocated":
            body["pointsRemain"] = event.points_remaining
        else:
            api_name = {"start_time": "startTime", "end_time": "endTime"}.get(key, key)
            body[api_name] = full[api_name]

    sink = current_app.extensions["notification_sink"]
    deliver(sink, g.current_user.id, KIND_SUCCESS, f"You updated the event '{event.name}'.")
    guests = event_service.guest_user_ids(event)
    if guests:
        deliver(sink, guests, KIND_INFO, f'Event "{event.name}" has been updated.')
    return jsonify(body)


@events_bp.delete("/<int:event_id>")
@require_auth
@require_role(ROLE_MANAGER)
def delete_event_route(event_id: int):
    event_service.delete_event(event_id)
    return "", 204


@events_bp.post("/<int:event_id>/organizers")
@require_auth
@require_role(ROLE_MANAGER)
def add_organizer_route(event_id: int):
    event = event_service.add_organizer(event_id, _utorid_body())
    body = _summary(event)
    body["organizers"] = [o.user.to_summary() for o in event.organizers]
    return jsonify(body), 201


@events_bp.delete("/<int:event_id>/organizers/<int:user_id>")
@require_auth
@require_role(ROLE_MANAGER)
def remove_organizer_route(event_id: int, user_id: int):
    event_service.remove_organizer(event_id, user_id)
    return "", 204


@events_bp.post("/<int:event_id>/guests")
@require_auth
def add_guest_route(event_id: int):
    event, user = event_service.add_guest(g.current_user, event_id, _utorid_body())
    body = _summary(event)
    body.update({"guestAdded": user.to_summary(), "numGuests": event.num_guests})
    return jsonify(body), 201


@events_bp.post("/<int:event_id>/guests/me")
@require_auth
def rsvp_route(event_id: int):
    event = event_service.rsvp(g.current_user, event_id)
    body = _summary(event)
    body.update({"guestAdded": g.current_user.to_summary(), "numGuests": event.num_guests})
    return jsonify(body), 201


@events_bp.delete("/<int:event_id>/guests/me")
@require_auth
def unrsvp_route(event_id: int):
    event_service.unrsvp(g.current_user, event_id)
    return "", 204


@events_bp.delete("/<int:event_id>/guests/<int:user_id>")
@require_auth
@require_role(ROLE_MANAGER)
def remove_guest_route(event_id: int, user_id: int):
    event_service.remove_guest(event_id, user_id)
    return "", 204


@events_bp.post("/<int:event_id>/transactions")
@require_auth
def award_points_route(event_id: int):
    data = request.get_json(silent=True) or {}
    strict_body(data, {"type", "utorid", "amount", "remark"})
    if data.get("type") != "event":
        raise ValidationError('type must be "event".')
    require_fields(data, "amount")
    amount = require_positive_int(data["amount"], "amount")
    target = data.get("utorid")
    if target is not None:
        validate_utorid(target)

    event, awarded = current_app.extensions["ledger"].create_event_transaction(
        g.current_user.id,
        event_id,
        target,
        amount,
        optional_string(data.get("remark"), "remark"),
    )

    results = [
        {
            "id": tx.id,
            "recipient": tx.user.utorid,
            "awarded": tx.amount,
            "type": tx.type,
            "relatedId": tx.related_id,
            "remark": tx.remark,
            "createdBy": tx.created_by.utorid,
        }
        for tx in awarded
    ]
    if target is not None:
        return jsonify(results[0]), 201
    return jsonify(results), 201
