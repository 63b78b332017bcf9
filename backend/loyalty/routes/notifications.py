from __future__ import annotations

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth
from ..services import notification_service
from ..validation import parse_bool_arg, parse_pagination

notifications_bp = Blueprint("notifications", __name__, url_prefix="/notifications")


@notifications_bp.route("", methods=["GET"])
@require_auth
def list_notifications():
    """The caller's own notifications, newest first (limit capped at 100)."""
    page, limit = parse_pagination(
        request.args,
        default_limit=20,
        max_limit=notification_service.MAX_PAGE_LIMIT,
    )
    count, rows = notification_service.list_notifications(
        g.current_user.id,
        read=parse_bool_arg(request.args, "read"),
        page=page,
        limit=limit,
    )
    return jsonify({"count": count, "results": [n.to_dict() for n in rows]})
