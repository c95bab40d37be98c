# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

Sign-in ceremonies (email OTP, passkeys) are handled outside this backend;
whatever authenticates the user calls create_session and hands the
plaintext token to the client. Operators can also issue tokens from the CLI
(flask users issue-token).

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS, default 30 days)
- Idle timeout (SESSION_IDLE_TIMEOUT_HOURS, default 7 days)
- Revocable on logout or security events
- Creating or using a session stamps users.last_active_at (inactive-user
  retention keys off it)
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SessionToken, User
from .audit_service import append_audit_log
from registry.time_utils import utcnow


DEFAULT_ABSOLUTE_TIMEOUT = timedelta(hours=720)
DEFAULT_IDLE_TIMEOUT = timedelta(hours=168)


class SessionError(ValueError):
    """Raised when a session cannot be created."""
    pass


@dataclass
class SessionContext:
    """Session context returned by validate_session."""
    user: User
    session: SessionToken


def _timeouts() -> tuple[timedelta, timedelta]:
    if not has_app_context():
        return DEFAULT_ABSOLUTE_TIMEOUT, DEFAULT_IDLE_TIMEOUT
    cfg = current_app.config
    return (
        timedelta(hours=int(cfg.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 720))),
        timedelta(hours=int(cfg.get("SESSION_IDLE_TIMEOUT_HOURS", 168))),
    )


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy, so a fast hash is sufficient.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create new session token for user.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise SessionError("User not found")

    plaintext_token = generate_token()
    absolute_timeout, _ = _timeouts()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + absolute_timeout,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False
    )
    db.session.add(session)
    user.last_active_at = now

    append_audit_log(
        action="auth.session_created",
        actor_user_id=user_id,
        target_type="user",
        target_id=user_id,
    )
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if the token is unknown, expired, idle too long, or revoked.
    Updates last_used_at on success (activity tracking).
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    _, idle_timeout = _timeouts()
    if now - session.last_used_at > idle_timeout:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = "Idle timeout"
        db.session.commit()
        return None

    user = session.user
    if not user:
        return None

    session.last_used_at = now
    user.last_active_at = now
    db.session.commit()

    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason

    append_audit_log(
        action="auth.logout",
        actor_user_id=session.user_id,
        target_type="user",
        target_id=session.user_id,
        metadata={"reason": reason},
    )
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """
    Revoke all active sessions for a user.

    Returns count of sessions revoked.
    """
    now = utcnow()

    sessions = db.session.query(SessionToken).filter_by(
        user_id=user_id,
        is_revoked=False
    ).all()

    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason

    db.session.commit()
    return len(sessions)


def cleanup_expired_sessions(*, older_than_days: int = 30) -> int:
    """
    Delete expired and revoked sessions created more than older_than_days ago.

    Returns count of sessions deleted.
    """
    now = utcnow()
    cutoff = now - timedelta(days=older_than_days)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True)
        ),
        SessionToken.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
