# Overview: Service-layer operations for maintenance; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import AuditLog, User
from .session_service import cleanup_expired_sessions
from registry.time_utils import utcnow


# Retention by action prefix. Membership history is kept for seven years.
RETENTION_POLICIES: dict[str, int] = {
    "auth.": 180,
    "member.": 2555,
    "membership.": 2555,
    "user.": 1095,
    "meeting.": 1095,
}

INACTIVE_USER_RETENTION_YEARS = 7


def cleanup_audit_logs(*, now: datetime | None = None) -> dict[str, int]:
    """
    Delete audit entries older than the retention window of their prefix.

    Actions without a matching prefix are kept.
    """
    now = now or utcnow()
    results: dict[str, int] = {}
    for prefix, days in RETENTION_POLICIES.items():
        cutoff = now - timedelta(days=days)
        deleted = db.session.query(AuditLog).filter(
            AuditLog.action.like(f"{prefix}%"),
            AuditLog.occurred_at < cutoff,
        ).delete(synchronize_session=False)
        results[prefix] = deleted
        if deleted:
            current_app.logger.info("Deleted %s audit log entries for %s* (older than %s days)", deleted, prefix, days)
    db.session.commit()
    return results


def cleanup_inactive_users(*, retention_years: int = INACTIVE_USER_RETENTION_YEARS, now: datetime | None = None) -> int:
    """
    Delete users with no activity for retention_years.

    A user who never signed in counts from created_at. Admins are never
    removed. Members, emails and attendance go with the user.
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=365 * retention_years)

    users = db.session.query(User).filter(
        User.is_admin.is_(False),
        db.or_(
            User.last_active_at < cutoff,
            db.and_(User.last_active_at.is_(None), User.created_at < cutoff),
        ),
    ).all()

    for user in users:
        db.session.delete(user)
    db.session.commit()

    if users:
        current_app.logger.info("Deleted %s users inactive since %s", len(users), cutoff.date().isoformat())
    return len(users)


def cleanup_sessions(*, older_than_days: int = 30) -> int:
    deleted = cleanup_expired_sessions(older_than_days=older_than_days)
    if deleted:
        current_app.logger.info("Deleted %s expired or revoked sessions", deleted)
    return deleted
