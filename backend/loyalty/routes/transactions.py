# Overview: Flask API routes for transaction operations; purchases, adjustments, listing and state flips.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import Forbidden
from ..models.users import ROLE_CASHIER, ROLE_MANAGER
from ..services import transaction_service
from ..validation import (
    ValidationError,
    optional_string,
    parse_bool_arg,
    parse_int_arg,
    parse_pagination,
    require_fields,
    require_int,
    require_positive_int,
    require_positive_number,
    strict_body,
    validate_utorid,
)

transactions_bp = Blueprint("transactions", __name__, url_prefix="/transactions")


def _engine() -> transaction_service.TransactionEngine:
    return current_app.extensions["ledger"]


def transaction_filters_from_args(args) -> dict:
    """Query-string filters shared by /transactions and /users/me/transactions."""
    return {
        "name": args.get("name") or None,
        "created_by": args.get("createdBy") or None,
        "suspicious": parse_bool_arg(args, "suspicious"),
        "promotion_id": parse_int_arg(args, "promotionId"),
        "tx_type": args.get("type") or None,
        "related_id": parse_int_arg(args, "relatedId"),
        "amount": parse_int_arg(args, "amount"),
        "operator": args.get("operator") or None,
    }


def _promotion_ids(value) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("promotionIds must be an array.")
    return [require_positive_int(v, "promotionIds") for v in value]


@transactions_bp.post("")
@require_auth
@require_role(ROLE_CASHIER)
def create_transaction_route():
    """
    Create a purchase (cashier+) or an adjustment (manager+).

    Purchase body: {type: "purchase", utorid, spent, promotionIds?, remark?}
    Adjustment body: {type: "adjustment", utorid, amount, relatedId, promotionIds?, remark?}
    """
    data = request.get_json(silent=True) or {}
    tx_type = data.get("type") if isinstance(data, dict) else None

    if tx_type == "purchase":
        strict_body(data, {"type", "utorid", "spent", "promotionIds", "remark"})
        require_fields(data, "utorid", "spent")
        validate_utorid(data["utorid"])
        spent = require_positive_number(data["spent"], "spent")

        tx = _engine().create_purchase(
            actor_id=g.current_user.id,
            customer_utorid=data["utorid"],
            spent=spent,
            promotion_ids=_promotion_ids(data.get("promotionIds")),
            remark=optional_string(data.get("remark"), "remark"),
        )
        return jsonify({
            "id": tx.id,
            "utorid": tx.user.utorid,
            "type": tx.type,
            "spent": tx.spent,
            "earned": tx.applied_amount,
            "remark": tx.remark,
            "promotionIds": [p.id for p in tx.promotions],
            "createdBy": tx.created_by.utorid,
        }), 201

    if tx_type == "adjustment":
        if not g.current_user.has_role(ROLE_MANAGER):
            raise Forbidden("Only managers can create adjustments.")
        strict_body(data, {"type", "utorid", "amount", "relatedId", "promotionIds", "remark"})
        require_fields(data, "utorid", "amount", "relatedId")
        validate_utorid(data["utorid"])

        tx = _engine().create_adjustment(
            actor_id=g.current_user.id,
            customer_utorid=data["utorid"],
            amount=require_int(data["amount"], "amount"),
            related_transaction_id=require_positive_int(data["relatedId"], "relatedId"),
            remark=optional_string(data.get("remark"), "remark"),
        )
        return jsonify({
            "id": tx.id,
            "utorid": tx.user.utorid,
            "amount": tx.amount,
            "type": tx.type,
            "relatedId": tx.related_id,
            "remark": tx.remark,
            "promotionIds": [],
            "createdBy": tx.created_by.utorid,
        }), 201

    raise ValidationError('Invalid transaction type. Must be "purchase" or "adjustment".')


@transactions_bp.get("")
@require_auth
@require_role(ROLE_MANAGER)
def list_transactions_route():
    page, limit = parse_pagination(request.args)
    count, rows = transaction_service.list_transactions(
        page=page, limit=limit, **transaction_filters_from_args(request.args)
    )
    return jsonify({"count": count, "results": [tx.to_dict() for tx in rows]})


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_role(ROLE_MANAGER)
def get_transaction_route(transaction_id: int):
    tx = transaction_service.get_transaction(transaction_id)
    return jsonify(tx.to_dict())


@transactions_bp.patch("/<int:transaction_id>/suspicious")
@require_auth
@require_role(ROLE_MANAGER)
def update_suspicious_route(transaction_id: int):
    data = request.get_json(silent=True) or {}
    strict_body(data, {"suspicious"})
    require_fields(data, "suspicious")
    if not isinstance(data["suspicious"], bool):
        raise ValidationError("suspicious must be a boolean.")

    tx = _engine().update_suspicious(transaction_id, data["suspicious"])
    return jsonify(tx.to_dict())


@transactions_bp.patch("/<int:transaction_id>/processed")
@require_auth
@require_role(ROLE_CASHIER)
def process_redemption_route(transaction_id: int):
    data = request.get_json(silent=True) or {}
    strict_body(data, {"processed"})
    if data.get("processed") is not True:
        raise ValidationError("processed can only be set to true.")

    tx = _engine().process_redemption(g.current_user.id, transaction_id)
    return jsonify({
        "id": tx.id,
        "utorid": tx.user.utorid,
        "type": tx.type,
        "processedBy": tx.processed_by.utorid,
        "redeemed": tx.amount,
        "remark": tx.remark,
        "createdBy": tx.created_by.utorid,
    })
