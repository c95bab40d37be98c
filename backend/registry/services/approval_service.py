# Overview: Service-layer operations for auto-approval eligibility; encapsulates business logic and database reads.

"""
Auto-Approval Eligibility

WHY: A renewing member whose previous period of the same type was approved by
the board does not need to wait for the board again. The decision is a pure
read over persisted history; it never writes.

ALGORITHM:
1. Preceding period = same membership type, latest end_time such that
   end_time <= new.start_time. None -> not eligible.
2. new.start_time - preceding.end_time > max_gap -> not eligible.
3. The user must hold a Member record for the preceding period with status
   active or resigned. A rejected record, or no record at all (a skipped
   cycle), -> not eligible.
4. If new.requires_student_verification: the primary email is on the student
   domain, or a secondary email on that domain is verified and not expired.
   Otherwise -> not eligible.
5. Eligible.

The session is passed in by the caller. Database failures raise
EligibilityEvaluationError chained to the original error; callers treat that
as "manual approval required".
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Member, Membership, SecondaryEmail, User
from registry.time_utils import utcnow


DEFAULT_MAX_GAP = timedelta(days=180)
DEFAULT_STUDENT_DOMAIN = "aalto.fi"

# Prior statuses that prove the board approved the user at some point
APPROVED_HISTORY_STATUSES = ("active", "resigned")


class EligibilityEvaluationError(ValueError):
    """Raised when eligibility cannot be decided because a read failed."""
    pass


def _config_value(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def get_max_gap() -> timedelta:
    days = _config_value("AUTO_APPROVAL_MAX_GAP_DAYS", None)
    return timedelta(days=int(days)) if days is not None else DEFAULT_MAX_GAP


def get_student_domain() -> str:
    return str(_config_value("STUDENT_EMAIL_DOMAIN", DEFAULT_STUDENT_DOMAIN)).lower()


def email_domain(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    return email.rsplit("@", 1)[1].strip().lower() or None


def find_preceding_membership(session: Session, new_membership: Membership) -> Membership | None:
    """Latest-ending period of the same type that ends on or before the new start."""
    query = session.query(Membership).filter(
        Membership.membership_type_id == new_membership.membership_type_id,
        Membership.end_time <= new_membership.start_time,
    )
    if new_membership.id is not None:
        query = query.filter(Membership.id != new_membership.id)
    return query.order_by(Membership.end_time.desc(), Membership.id.desc()).first()


def has_valid_student_email(
    session: Session,
    user_id: int,
    *,
    student_domain: str | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Primary email on the student domain, or a verified, unexpired secondary
    email on it.
    """
    domain = (student_domain or get_student_domain()).lower()
    now = now or utcnow()

    user = session.get(User, user_id)
    if user is None:
        return False
    if email_domain(user.email) == domain:
        return True

    secondaries = session.query(SecondaryEmail).filter(
        SecondaryEmail.user_id == user_id,
        SecondaryEmail.domain == domain,
        SecondaryEmail.verified_at.isnot(None),
    ).all()
    return any(e.expires_at is None or e.expires_at > now for e in secondaries)


def check_auto_approval_eligibility(
    session: Session,
    user_id: int,
    new_membership: Membership,
    *,
    max_gap: timedelta | None = None,
    student_domain: str | None = None,
    now: datetime | None = None,
) -> bool:
    max_gap = max_gap if max_gap is not None else get_max_gap()

    try:
        preceding = find_preceding_membership(session, new_membership)
        if preceding is None:
            return False

        if new_membership.start_time - preceding.end_time > max_gap:
            return False

        prior_member = session.query(Member.id).filter(
            Member.user_id == user_id,
            Member.membership_id == preceding.id,
            Member.status.in_(APPROVED_HISTORY_STATUSES),
        ).first()
        if prior_member is None:
            return False

        if new_membership.requires_student_verification:
            if not has_valid_student_email(session, user_id, student_domain=student_domain, now=now):
                return False

        return True
    except SQLAlchemyError as e:
        raise EligibilityEvaluationError(
            f"Could not evaluate auto-approval for user {user_id}"
        ) from e
