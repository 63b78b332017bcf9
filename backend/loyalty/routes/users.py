# Overview: Flask API routes for user operations; registration, profiles, flags, transfers and redemptions.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFound
from ..models.users import ROLE_CASHIER, ROLE_MANAGER
from ..services import transaction_service, user_service
from ..time_utils import to_utc_z
from ..validation import (
    ValidationError,
    optional_string,
    parse_bool_arg,
    parse_pagination,
    require_fields,
    require_positive_int,
    strict_body,
    validate_birthday,
    validate_email,
    validate_name,
    validate_password,
    validate_role,
    validate_utorid,
)
from .transactions import transaction_filters_from_args

users_bp = Blueprint("users", __name__, url_prefix="/users")


def _promotion_summaries(user_id: int) -> list[dict]:
    return [
        {
            "id": p.id,
            "name": p.name,
            "minSpending": p.min_spending,
            "rate": p.rate,
            "points": p.points,
        }
        for p in user_service.available_one_time_promotions(user_id)
    ]


def _engine():
    return current_app.extensions["ledger"]


@users_bp.post("")
@require_auth
@require_role(ROLE_CASHIER)
def register_user_route():
    data = request.get_json(silent=True) or {}
    strict_body(data, {"utorid", "name", "email"})
    require_fields(data, "utorid", "name", "email")
    validate_utorid(data["utorid"])
    validate_name(data["name"])
    validate_email(data["email"])

    user, reset = user_service.register_user(data["utorid"], data["name"], data["email"])
    current_app.logger.info("User %s registered by %s", user.utorid, g.current_user.utorid)
    return jsonify({
        "id": user.id,
        "utorid": user.utorid,
        "name": user.name,
        "email": user.email,
        "verified": user.verified,
        "expiresAt": to_utc_z(reset.expires_at),
        "resetToken": reset.token,
    }), 201


@users_bp.get("")
@require_auth
@require_role(ROLE_MANAGER)
def list_users_route():
    role = request.args.get("role") or None
    if role is not None:
        validate_role(role)
    page, limit = parse_pagination(request.args)

    count, users = user_service.list_users(
        name=request.args.get("name") or None,
        role=role,
        verified=parse_bool_arg(request.args, "verified"),
        activated=parse_bool_arg(request.args, "activated"),
        page=page,
        limit=limit,
    )
    return jsonify({"count": count, "results": [u.to_dict() for u in users]})


@users_bp.get("/me")
@require_auth
def get_me_route():
    user = g.current_user
    data = user.to_dict()
    data["promotions"] = _promotion_summaries(user.id)
    return jsonify(data)


@users_bp.patch("/me")
@require_auth
def update_me_route():
    data = request.get_json(silent=True) or {}
    strict_body(data, {"name", "email", "birthday"})
    fields = {k: v for k, v in data.items() if v is not None}
    if not fields:
        raise ValidationError("At least one field must be provided to update.")
    if "name" in fields:
        validate_name(fields["name"])
    if "email" in fields:
        validate_email(fields["email"])
    if "birthday" in fields:
        validate_birthday(fields["birthday"])

    user = user_service.update_me(g.current_user, **fields)
    return jsonify(user.to_dict())


@users_bp.patch("/me/password")
@require_auth
def change_password_route():
    data = request.get_json(silent=True) or {}
    strict_body(data, {"old", "new"})
    require_fields(data, "old", "new")
    if not isinstance(data["old"], str):
        raise ValidationError("old must be a string.")
    validate_password(data["new"])

    user_service.change_password(g.current_user, data["old"], data["new"])
    return jsonify({"message": "Password updated."})


@users_bp.get("/me/transactions")
@require_auth
def list_my_transactions_route():
    page, limit = parse_pagination(request.args)
    count, rows = transaction_service.list_user_transactions(
        g.current_user.id, page=page, limit=limit, **transaction_filters_from_args(request.args)
    )
    return jsonify({"count": count, "results": [tx.to_dict() for tx in rows]})


@users_bp.post("/me/transactions")
@require_auth
def create_redemption_route():
    data = request.get_json(silent=True) or {}
    strict_body(data, {"type", "amount", "remark"})
    if data.get("type") != "redemption":
        raise ValidationError('type must be "redemption".')
    require_fields(data, "amount")
    amount = require_positive_int(data["amount"], "amount")

    tx = _engine().create_redemption(
        g.current_user.id, amount, optional_string(data.get("remark"), "remark")
    )
    return jsonify({
        "id": tx.id,
        "utorid": tx.user.utorid,
        "type": tx.type,
        "processedBy": None,
        "amount": tx.amount,
        "remark": tx.remark,
        "createdBy": tx.created_by.utorid,
    }), 201


@users_bp.get("/<int:user_id>")
@require_auth
@require_role(ROLE_CASHIER)
def get_user_route(user_id: int):
    user = user_service.get_user(user_id)
    if g.current_user.has_role(ROLE_MANAGER):
        data = user.to_dict()
    else:
        data = user.to_cashier_dict()
    data["promotions"] = _promotion_summaries(user.id)
    return jsonify(data)


@users_bp.patch("/<int:user_id>")
@require_auth
@require_role(ROLE_MANAGER)
def update_user_route(user_id: int):
    data = request.get_json(silent=True) or {}
    strict_body(data, {"email", "verified", "suspicious", "role"})
    fields = {k: v for k, v in data.items() if v is not None}
    if not fields:
        raise ValidationError("At least one field must be provided to update.")

    if "email" in fields:
        validate_email(fields["email"])
    if "verified" in fields and fields["verified"] is not True:
        raise ValidationError("verified can only be set to true.")
    if "suspicious" in fields and not isinstance(fields["suspicious"], bool):
        raise ValidationError("suspicious must be a boolean.")
    if "role" in fields:
        validate_role(fields["role"])

    user, changed = user_service.update_user(g.current_user, user_id, **fields)

    body = {"id": user.id, "utorid": user.utorid, "name": user.name}
    for field in sorted(changed):
        body[field] = getattr(user, field)
    return jsonify(body)


@users_bp.post("/<int:user_id>/transactions")
@require_auth
def create_transfer_route(user_id: int):
    data = request.get_json(silent=True) or {}
    strict_body(data, {"type", "amount", "remark"})
    if data.get("type") != "transfer":
        raise ValidationError('type must be "transfer".')
    require_fields(data, "amount")
    amount = require_positive_int(data["amount"], "amount")

    sent, received = _engine().create_transfer(
        g.current_user.id, user_id, amount, optional_string(data.get("remark"), "remark")
    )
    return jsonify({
        "id": sent.id,
        "sender": sent.user.utorid,
        "recipient": received.user.utorid,
        "type": sent.type,
        "sent": amount,
        "remark": sent.remark,
        "createdBy": sent.created_by.utorid,
    }), 201
