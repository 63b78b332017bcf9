from __future__ import annotations
from datetime import datetime
import re
from loyalty.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Float, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import BadRequest
from .models.promotions import VALID_PROMO_TYPES
from .models.users import ROLE_LADDER


UTORID_RE = re.compile(r"^[a-zA-Z0-9]{7,8}$")
EMAIL_RE = re.compile(r"@(mail\.utoronto\.ca|utoronto\.ca)$")
BIRTHDAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DEFAULT_PAGE_LIMIT = 10


class ValidationError(BadRequest):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: API field name -> model column key (security boundary)
    - required_on_create: API fields required for POST
    """
    writable_fields: dict[str, str]
    required_on_create: set[str] = field(default_factory=set)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(name: str, col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Booleans must be real JSON booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{name} must be a boolean")

    # Integers - reject floats, bools and numeric strings
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise ValidationError(f"{name} must be an integer")

    # Floats - any JSON number
    if isinstance(coltype, Float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise ValidationError(f"{name} must be a number")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{name} must be a valid ISO 8601 date")
            if dt is None:
                raise ValidationError(f"{name} must be a valid ISO 8601 date")
            return dt
        raise ValidationError(f"{name} must be a valid ISO 8601 date")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by model column.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys, at least one)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    strict_body(payload, policy.writable_fields)

    if partial:
        if not payload:
            raise ValidationError("At least one field must be provided to update.")
    else:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    patch: dict = {}

    for name, raw in payload.items():
        key = policy.writable_fields[name]
        col = cols[key]
        val = _coerce_value(name, col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str):
            if val == "" and not col.nullable:
                raise ValidationError(f"{name} cannot be blank")
            if isinstance(col.type, String) and col.type.length and len(val) > col.type.length:
                raise ValidationError(f"{name} exceeds max length {col.type.length}")

        patch[key] = val

    return patch


def strict_body(payload: dict, allowed) -> None:
    """Reject fields the endpoint does not accept."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for key in payload:
        if key not in allowed:
            raise ValidationError(f"Extra field '{key}' is not allowed.")


def require_fields(payload: dict, *names: str) -> None:
    missing = [n for n in names if payload.get(n) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def require_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer.")
    return value


def require_positive_int(value: Any, name: str) -> int:
    require_int(value, name)
    if value < 1:
        raise ValidationError(f"{name} must be a positive integer.")
    return value


def require_positive_number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValidationError(f"{name} must be a positive number.")
    return value


def optional_string(value: Any, name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string.")
    return value


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------

def validate_utorid(utorid: Any) -> str:
    if not isinstance(utorid, str):
        raise ValidationError("utorid must be a string.")
    if not UTORID_RE.match(utorid):
        raise ValidationError("utorid must be 7-8 alphanumeric characters")
    return utorid


def validate_name(name: Any) -> str:
    if not isinstance(name, str):
        raise ValidationError("Name must be a string.")
    if not 1 <= len(name) <= 50:
        raise ValidationError("Name must be 1-50 characters")
    return name


def validate_email(email: Any) -> str:
    if not isinstance(email, str):
        raise ValidationError("Email must be a string.")
    if not EMAIL_RE.search(email):
        raise ValidationError("Email must be a valid University of Toronto email")
    return email


def validate_password(password: Any) -> str:
    """
    Password strength requirements:
    - 8 to 20 characters
    - at least one uppercase, one lowercase, one digit, one special character
    """
    if not isinstance(password, str):
        raise ValidationError("Password must be a string.")
    if not 8 <= len(password) <= 20:
        raise ValidationError("Password must be 8-20 characters")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        raise ValidationError("Password must contain at least one number")
    if not re.search(r"[^A-Za-z0-9]", password):
        raise ValidationError("Password must contain at least one special character")
    return password


def validate_birthday(birthday: Any) -> str:
    if not isinstance(birthday, str) or not BIRTHDAY_RE.match(birthday):
        raise ValidationError("Birthday must be a string in YYYY-MM-DD format.")
    try:
        datetime.strptime(birthday, "%Y-%m-%d")
    except ValueError:
        raise ValidationError("Birthday is not a valid calendar date.")
    return birthday


def validate_role(role: Any) -> str:
    if role not in ROLE_LADDER:
        raise ValidationError("Invalid role specified.")
    return role


# ---------------------------------------------------------------------------
# Query-string parsing
# ---------------------------------------------------------------------------

def parse_pagination(args, default_limit: int = DEFAULT_PAGE_LIMIT, max_limit: int | None = None) -> tuple[int, int]:
    page = _parse_positive_arg(args, "page", 1)
    limit = _parse_positive_arg(args, "limit", default_limit)
    if max_limit is not None:
        limit = min(limit, max_limit)
    return page, limit


def _parse_positive_arg(args, name: str, default: int) -> int:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a positive integer.")
    if value < 1:
        raise ValidationError(f"{name} must be a positive integer.")
    return value


def parse_bool_arg(args, name: str) -> bool | None:
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.lower()
    if lowered not in ("true", "false"):
        raise ValidationError(f'{name} must be "true" or "false".')
    return lowered == "true"


def parse_int_arg(args, name: str) -> int | None:
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer.")


# ---------------------------------------------------------------------------
# Business rules not captured by column metadata
# ---------------------------------------------------------------------------

def enforce_rules_promotion(patch: dict) -> None:
    if "type" in patch and patch["type"] not in VALID_PROMO_TYPES:
        raise ValidationError('type must be "automatic" or "one-time".')

    start, end = patch.get("start_time"), patch.get("end_time")
    if start is not None and end is not None and end <= start:
        raise ValidationError("endTime must be after startTime.")

    if patch.get("min_spending") is not None and patch["min_spending"] <= 0:
        raise ValidationError("minSpending must be a positive number.")
    if patch.get("rate") is not None and patch["rate"] <= 0:
        raise ValidationError("rate must be a positive number.")
    if patch.get("points") is not None and patch["points"] < 0:
        raise ValidationError("points must be a positive integer.")


def enforce_rules_event(patch: dict) -> None:
    start, end = patch.get("start_time"), patch.get("end_time")
    if start is not None and end is not None and end <= start:
        raise ValidationError("endTime must be after startTime.")

    if patch.get("capacity") is not None and patch["capacity"] < 1:
        raise ValidationError("capacity must be a positive integer or null.")
    if patch.get("points_allocated") is not None and patch["points_allocated"] < 1:
        raise ValidationError("points must be a positive integer.")
