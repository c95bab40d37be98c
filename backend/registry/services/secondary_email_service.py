# Overview: Service-layer operations for secondary emails; encapsulates business logic and database work.

"""
Secondary Email Service

WHY: Users prove ownership of extra addresses, chiefly a student-domain
address used for student verification. Verified addresses on an expiring
domain lapse after SECONDARY_EMAIL_EXPIRY_MONTHS and must be re-verified.

SECURITY:
- Lookups by email consider the primary address and VERIFIED secondary
  addresses only. An unverified claim never resolves to a user.
- Adding an address that is another user's primary or verified secondary
  fails with a generic message (no account enumeration).
- Verification itself (sending and checking the code) happens outside this
  service; mark_verified is called once ownership is proven.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SecondaryEmail, User
from ..validation import ValidationError, normalize_email
from .audit_service import append_audit_log
from registry.time_utils import add_months, utcnow


MAX_SECONDARY_EMAILS = 10
GENERIC_ADD_ERROR = "Could not add this email. Please try a different email address."


class SecondaryEmailError(ValueError):
    """Raised for invalid secondary email operations."""
    pass


def _expiring_domains() -> dict[str, int]:
    """domain -> validity in months after verification"""
    if has_app_context():
        domain = current_app.config.get("STUDENT_EMAIL_DOMAIN", "aalto.fi")
        months = current_app.config.get("SECONDARY_EMAIL_EXPIRY_MONTHS", 6)
    else:
        domain, months = "aalto.fi", 6
    return {domain.lower(): int(months)}


def extract_domain(email: str) -> str:
    try:
        normalized = normalize_email(email)
    except ValidationError as e:
        raise SecondaryEmailError(str(e)) from e
    return normalized.rsplit("@", 1)[1]


def calculate_expiry(domain: str, verified_at: datetime) -> datetime | None:
    """None for domains that never expire."""
    months = _expiring_domains().get(domain.lower())
    if months is None:
        return None
    return add_months(verified_at, months)


def is_secondary_email_valid(email: SecondaryEmail, *, now: datetime | None = None) -> bool:
    if email.verified_at is None:
        return False
    if email.expires_at is None:
        return True
    return email.expires_at > (now or utcnow())


def has_valid_domain_email(emails: Iterable[SecondaryEmail], domain: str, *, now: datetime | None = None) -> bool:
    domain = domain.lower()
    return any(e.domain.lower() == domain and is_secondary_email_valid(e, now=now) for e in emails)


def get_user_by_email(email: str) -> User | None:
    """Primary address first, then verified secondary addresses."""
    normalized = email.strip().lower()
    user = db.session.query(User).filter_by(email=normalized).first()
    if user:
        return user
    return db.session.query(User).join(SecondaryEmail, SecondaryEmail.user_id == User.id).filter(
        SecondaryEmail.email == normalized,
        SecondaryEmail.verified_at.isnot(None),
    ).first()


def get_users_by_emails(emails: Iterable[str]) -> dict[str, User]:
    """Batch form of get_user_by_email; keys are lower-cased addresses."""
    normalized = list({e.strip().lower() for e in emails if e and e.strip()})
    if not normalized:
        return {}

    result: dict[str, User] = {
        u.email: u for u in db.session.query(User).filter(User.email.in_(normalized)).all()
    }

    rows = db.session.query(SecondaryEmail.email, User).join(User, User.id == SecondaryEmail.user_id).filter(
        SecondaryEmail.email.in_(normalized),
        SecondaryEmail.verified_at.isnot(None),
    ).all()
    for email, user in rows:
        result.setdefault(email, user)
    return result


def list_secondary_emails(user_id: int) -> list[SecondaryEmail]:
    return db.session.query(SecondaryEmail).filter_by(user_id=user_id).order_by(
        SecondaryEmail.created_at.asc(), SecondaryEmail.id.asc()
    ).all()


def get_secondary_email(email_id: int, user_id: int) -> SecondaryEmail | None:
    return db.session.query(SecondaryEmail).filter_by(id=email_id, user_id=user_id).first()


def create_secondary_email(user_id: int, email: str) -> SecondaryEmail:
    """
    Add an unverified address. Re-adding an address the user already has
    returns the existing row.
    """
    normalized = email.strip().lower() if isinstance(email, str) else email
    domain = extract_domain(normalized)

    existing = db.session.query(SecondaryEmail).filter_by(user_id=user_id, email=normalized).first()
    if existing:
        return existing

    if db.session.query(User.id).filter_by(email=normalized).first():
        raise SecondaryEmailError(GENERIC_ADD_ERROR)

    verified_elsewhere = db.session.query(SecondaryEmail.id).filter(
        SecondaryEmail.email == normalized,
        SecondaryEmail.verified_at.isnot(None),
    ).first()
    if verified_elsewhere:
        raise SecondaryEmailError(GENERIC_ADD_ERROR)

    count = db.session.query(SecondaryEmail).filter_by(user_id=user_id).count()
    if count >= MAX_SECONDARY_EMAILS:
        raise SecondaryEmailError(f"Maximum {MAX_SECONDARY_EMAILS} secondary emails allowed")

    row = SecondaryEmail(user_id=user_id, email=normalized, domain=domain, created_at=utcnow())
    db.session.add(row)
    db.session.flush()

    append_audit_log(
        action="user.secondary_email_added",
        actor_user_id=user_id,
        target_type="user",
        target_id=user_id,
        metadata={"email": normalized},
    )
    db.session.commit()
    return row


def mark_verified(email_id: int, user_id: int, *, actor_user_id: int | None = None) -> SecondaryEmail:
    row = get_secondary_email(email_id, user_id)
    if row is None:
        raise SecondaryEmailError("Secondary email not found")

    verified_at = utcnow()
    row.verified_at = verified_at
    row.expires_at = calculate_expiry(row.domain, verified_at)

    # Unverified claims on the same address by other users are void now
    db.session.query(SecondaryEmail).filter(
        SecondaryEmail.email == row.email,
        SecondaryEmail.id != row.id,
        SecondaryEmail.verified_at.is_(None),
    ).delete(synchronize_session=False)

    append_audit_log(
        action="user.secondary_email_verified",
        actor_user_id=actor_user_id if actor_user_id is not None else user_id,
        target_type="user",
        target_id=user_id,
        metadata={"email": row.email, "expires_at": row.expires_at.isoformat() if row.expires_at else None},
    )
    db.session.commit()
    return row


def delete_unverified_claims(email: str) -> int:
    """Drop other users' pending claims on an address someone signed in with."""
    deleted = db.session.query(SecondaryEmail).filter(
        SecondaryEmail.email == email.strip().lower(),
        SecondaryEmail.verified_at.is_(None),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def delete_secondary_email(email_id: int, user_id: int) -> None:
    row = get_secondary_email(email_id, user_id)
    if row is None:
        raise SecondaryEmailError("Secondary email not found")

    append_audit_log(
        action="user.secondary_email_deleted",
        actor_user_id=user_id,
        target_type="user",
        target_id=user_id,
        metadata={"email": row.email},
    )
    db.session.delete(row)
    db.session.commit()


def change_primary_email(email_id: int, user_id: int) -> User:
    """
    Promote a verified, unexpired secondary address to primary.

    The old primary becomes a verified secondary address in the same
    transaction.
    """
    row = get_secondary_email(email_id, user_id)
    if row is None:
        raise SecondaryEmailError("Secondary email not found")
    if not is_secondary_email_valid(row):
        raise SecondaryEmailError("Only verified, unexpired emails can become primary")

    user = db.session.get(User, user_id)
    old_email = user.email
    new_email = row.email
    now = utcnow()

    db.session.delete(row)
    db.session.flush()

    user.email = new_email
    db.session.add(SecondaryEmail(
        user_id=user_id,
        email=old_email,
        domain=old_email.rsplit("@", 1)[1],
        verified_at=now,
        expires_at=calculate_expiry(old_email.rsplit("@", 1)[1], now),
        created_at=now,
    ))

    append_audit_log(
        action="user.primary_email_changed",
        actor_user_id=user_id,
        target_type="user",
        target_id=user_id,
        metadata={"old_email": old_email, "new_email": new_email},
    )
    db.session.commit()
    return user
