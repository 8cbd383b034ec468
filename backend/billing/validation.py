from __future__ import annotations

from datetime import datetime
from typing import Any

from billing.time_utils import parse_iso_datetime

from .errors import ValidationError


# Sentinel for "key absent from payload" (distinct from an explicit null)
MISSING = object()


def coerce_int(value: Any, label: str) -> int:
    """
    Strict integer coercion for money, quantities and ids.

    Accepts ints and plain digit strings. Rejects bools (an int subclass),
    floats, decimals ("12.5") and scientific notation ("1e3").
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{label} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{label} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{label} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{label} must be an integer") from None
    if isinstance(value, float):
        raise ValidationError(f"{label} must be an integer, not a decimal")
    raise ValidationError(f"{label} must be an integer")


def json_body(request) -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def required_int(payload: dict, key: str) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"{key} is required")
    return coerce_int(payload[key], key)


def optional_int(payload: dict, key: str, default=None):
    if key not in payload:
        return default
    if payload[key] is None:
        return None
    return coerce_int(payload[key], key)


def optional_str(payload: dict, key: str, default=None):
    if key not in payload:
        return default
    value = payload[key]
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip() or None


def optional_datetime(payload: dict, key: str, default=None) -> datetime | None:
    if key not in payload:
        return default
    value = payload[key]
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime") from None
