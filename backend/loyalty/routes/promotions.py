from __future__ import annotations

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth, require_role
from ..models import Promotion
from ..models.promotions import VALID_PROMO_TYPES
from ..models.users import ROLE_MANAGER
from ..services import promotions_service
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_promotion,
    parse_bool_arg,
    parse_pagination,
    validate_payload,
)

PROMOTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "name": "name",
        "description": "description",
        "type": "type",
        "startTime": "start_time",
        "endTime": "end_time",
        "minSpending": "min_spending",
        "rate": "rate",
        "points": "points",
    },
    required_on_create={"name", "description", "type", "startTime", "endTime"},
)

promotions_bp = Blueprint("promotions", __name__, url_prefix="/promotions")


def _promotion_view(promo: Promotion) -> dict:
    # Regular users and cashiers do not see startTime
    return promo.to_dict(include_start=g.current_user.has_role(ROLE_MANAGER))


@promotions_bp.route("", methods=["POST"])
@require_auth
@require_role(ROLE_MANAGER)
def create_promotion():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Promotion, payload=payload, policy=PROMOTION_POLICY, partial=False)
    enforce_rules_promotion(patch)

    promo = promotions_service.create_promotion(patch)
    return jsonify(promo.to_dict()), 201


@promotions_bp.route("", methods=["GET"])
@require_auth
def list_promotions():
    promo_type = request.args.get("type") or None
    if promo_type is not None and promo_type not in VALID_PROMO_TYPES:
        raise ValidationError('type must be "automatic" or "one-time".')
    order = request.args.get("order") or None
    if order is not None and order not in ("asc", "desc"):
        raise ValidationError('order must be "asc" or "desc".')
    page, limit = parse_pagination(request.args)

    count, promos = promotions_service.list_promotions(
        g.current_user,
        name=request.args.get("name") or None,
        promo_type=promo_type,
        started=parse_bool_arg(request.args, "started"),
        ended=parse_bool_arg(request.args, "ended"),
        order_by=request.args.get("orderBy") or None,
        order=order,
        page=page,
        limit=limit,
    )
    return jsonify({"count": count, "results": [_promotion_view(p) for p in promos]})


@promotions_bp.route("/<int:promo_id>", methods=["GET"])
@require_auth
def get_promotion(promo_id: int):
    promo = promotions_service.get_promotion(g.current_user, promo_id)
    return jsonify(_promotion_view(promo))


@promotions_bp.route("/<int:promo_id>", methods=["PATCH"])
@require_auth
@require_role(ROLE_MANAGER)
def update_promotion(promo_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Promotion, payload=payload, policy=PROMOTION_POLICY, partial=True)
    enforce_rules_promotion(patch)

    promo = promotions_service.update_promotion(promo_id, patch)
    return jsonify(promo.to_dict())


@promotions_bp.route("/<int:promo_id>", methods=["DELETE"])
@require_auth
@require_role(ROLE_MANAGER)
def delete_promotion(promo_id: int):
    promotions_service.delete_promotion(promo_id)
    return "", 204
