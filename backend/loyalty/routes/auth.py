# Overview: Flask API routes for auth operations; login and password reset.

"""
Authentication API routes

- POST /auth/tokens: exchange utorid/password for a bearer token
- POST /auth/resets: issue a reset token (returned in the response; no email)
- POST /auth/resets/<token>: consume a reset token and set a new password
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import auth_service
from ..time_utils import to_utc_z
from ..validation import (
    require_fields,
    strict_body,
    validate_email,
    validate_password,
    validate_utorid,
)


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/tokens")
def login_route():
    data = request.get_json(silent=True) or {}
    strict_body(data, {"utorid", "password"})
    require_fields(data, "utorid", "password")

    user = auth_service.authenticate(data["utorid"], data["password"])
    token, expires_at = auth_service.issue_token(user)

    current_app.logger.info("Login: %s", user.utorid)
    return jsonify({"token": token, "expiresAt": to_utc_z(expires_at)}), 200


@auth_bp.post("/resets")
def request_reset_route():
    data = request.get_json(silent=True) or {}
    strict_body(data, {"utorid", "email"})
    require_fields(data, "utorid", "email")
    validate_utorid(data["utorid"])
    validate_email(data["email"])

    reset = auth_service.request_reset(data["utorid"], data["email"])
    return jsonify({"expiresAt": to_utc_z(reset.expires_at), "resetToken": reset.token}), 202


@auth_bp.post("/resets/<token>")
def perform_reset_route(token: str):
    data = request.get_json(silent=True) or {}
    strict_body(data, {"utorid", "password"})
    require_fields(data, "utorid", "password")
    validate_utorid(data["utorid"])
    validate_password(data["password"])

    user = auth_service.perform_reset(token, data["utorid"], data["password"])
    current_app.logger.info("Password reset completed for %s", user.utorid)
    return jsonify({"message": "Password has been reset."}), 200
