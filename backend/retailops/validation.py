# Overview: Request payload parsing shared by the API routes.

from __future__ import annotations

from typing import Any

from .enums import OrderStatus, normalize_order_status
from .errors import ValidationError


# Ingress spellings of transition fields -> canonical field name
TRANSITION_FIELD_ALIASES = {
    "awb_number": "courier_tracking_id",
    "tracking_id": "courier_tracking_id",
    "tracking_number": "courier_tracking_id",
    "courier": "courier_partner",
    "assigned_rider_id": "rider_id",
    "cancel_reason": "cancellation_reason",
}

TRANSITION_FIELDS = {
    "rider_id",
    "courier_partner",
    "courier_tracking_id",
    "tracking_url",
    "reason",
    "cancellation_reason",
    "rejection_reason",
    "return_reason",
    "followup_reason",
    "followup_date",
}


def require_json_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def normalize_transition_fields(data: dict) -> dict:
    """Keep known transition fields, resolving alias spellings. Canonical names win."""
    fields: dict = {}
    for key, value in data.items():
        canonical = TRANSITION_FIELD_ALIASES.get(key)
        if canonical and canonical not in data:
            fields[canonical] = value
        elif key in TRANSITION_FIELDS:
            fields[key] = value

    for key, value in list(fields.items()):
        if isinstance(value, str):
            value = value.strip()
            fields[key] = value or None
    return {k: v for k, v in fields.items() if v is not None}


def parse_status_request(data: Any) -> tuple[OrderStatus, dict]:
    """{status, reason?, ...fields} -> (canonical status, canonical extra fields)."""
    data = require_json_object(data)
    status = normalize_order_status(data.get("status"))
    return status, normalize_transition_fields(data)


def parse_pagination(args, *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    try:
        limit = int(args.get("limit", default_limit))
        offset = int(args.get("offset", 0))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")
    return min(limit, max_limit), offset
