# Overview: Request-body validation for registry writes (users, membership types, periods).

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from registry.time_utils import parse_iso_datetime


# One "@", no whitespace, a dot in the domain
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PREFERRED_LANGUAGES = ("unspecified", "finnish", "english")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., email already taken)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which fields a route may write, and which a create must supply."""

    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


USER_PROFILE_POLICY = ModelValidationPolicy(
    writable_fields={"first_names", "last_name", "home_municipality", "preferred_language", "is_allowed_emails"},
)

ADMIN_USER_POLICY = ModelValidationPolicy(
    writable_fields={
        "email", "first_names", "last_name", "home_municipality",
        "preferred_language", "is_allowed_emails", "is_admin",
    },
)

MEMBERSHIP_TYPE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

MEMBERSHIP_POLICY = ModelValidationPolicy(
    writable_fields={
        "membership_type_id", "start_time", "end_time",
        "price_reference", "requires_student_verification",
    },
    required_on_create={"membership_type_id", "start_time", "end_time"},
)


def normalize_email(value: Any) -> str:
    """Lower-case and validate an email address."""
    if not isinstance(value, str):
        raise ValidationError("email must be a string")
    email = value.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Integer):
        # bool is an int subclass; floats and "1e3" are refused
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
            return int(value.strip())
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false", "1", "0"}:
            return value.strip().lower() in {"true", "1"}
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        try:
            parsed = parse_iso_datetime(value) if isinstance(value, str) else None
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
        return parsed

    # Localized text maps {"fi": "...", "en": "..."}
    if isinstance(coltype, JSON):
        if not isinstance(value, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in value.items()
        ):
            raise ValidationError(f"{col.key} must be an object of locale -> text")
        return {k: v.strip() for k, v in value.items()}

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def _clean_value(col, raw: Any):
    if raw is None:
        if not col.nullable:
            raise ValidationError(f"{col.key} cannot be null")
        return None

    value = _coerce_value(col, raw)
    if isinstance(value, str):
        if value == "" and not col.nullable:
            raise ValidationError(f"{col.key} cannot be blank")
        limit = getattr(col.type, "length", None)
        if limit and len(value) > limit:
            raise ValidationError(f"{col.key} exceeds max length {limit}")
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON body against a model's columns and a write policy.

    Only policy.writable_fields are accepted. Values are coerced by column
    type (integers, booleans, ISO-8601 datetimes, locale maps, strings) and
    checked against nullability and String(n) length.

    partial=True validates only the keys present (PATCH); partial=False also
    requires policy.required_on_create (POST).
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(set(policy.required_on_create) - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    for key in payload:
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        if key not in cols:
            raise ValidationError(f"Unknown field: {key}")

    return {key: _clean_value(cols[key], raw) for key, raw in payload.items()}


def enforce_rules_user(patch: dict) -> None:
    if "email" in patch:
        patch["email"] = normalize_email(patch["email"])
    if "preferred_language" in patch and patch["preferred_language"] not in PREFERRED_LANGUAGES:
        raise ValidationError(
            f"preferred_language must be one of: {', '.join(PREFERRED_LANGUAGES)}"
        )


def enforce_rules_membership_type(patch: dict) -> None:
    if "name" in patch and not any((patch["name"] or {}).values()):
        raise ValidationError("name must contain at least one non-empty translation")


def enforce_rules_membership(patch: dict, *, current_start: datetime | None = None, current_end: datetime | None = None) -> None:
    start = patch.get("start_time", current_start)
    end = patch.get("end_time", current_end)
    if start is not None and end is not None and end <= start:
        raise ValidationError("end_time must be after start_time")
