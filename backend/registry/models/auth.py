from __future__ import annotations

from ..extensions import db
from registry.time_utils import to_utc_z


class User(db.Model):
    """
    Registry users. One account per person, identified by its primary email.

    WHY: Memberships, attendance and audit rows all point at a user; secondary
    addresses (SecondaryEmail) are separate rows so the primary stays unique.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_last_name", "last_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Always stored lower-cased
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    first_names = db.Column(db.String(255), nullable=True)
    last_name = db.Column(db.String(255), nullable=True)
    home_municipality = db.Column(db.String(255), nullable=True)

    # unspecified, finnish, english
    preferred_language = db.Column(db.String(16), nullable=False, default="unspecified")
    is_allowed_emails = db.Column(db.Boolean, nullable=False, default=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)

    # Attendance QR token (base64url); issued lazily
    qr_token = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    last_active_at = db.Column(db.DateTime, nullable=True)

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_names, self.last_name) if p]
        return " ".join(parts) if parts else self.email

    @property
    def locale(self) -> str:
        return "en" if self.preferred_language == "english" else "fi"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_names": self.first_names,
            "last_name": self.last_name,
            "home_municipality": self.home_municipality,
            "preferred_language": self.preferred_language,
            "is_allowed_emails": self.is_allowed_emails,
            "is_admin": self.is_admin,
            "created_at": to_utc_z(self.created_at),
            "last_active_at": to_utc_z(self.last_active_at),
        }


class SecondaryEmail(db.Model):
    """
    Additional addresses a user has proven ownership of.

    A verified address on an expiring domain (the student domain) carries an
    expires_at; it stops counting as proof of student status after that.
    Unverified rows never count for lookups or eligibility.
    """
    __tablename__ = "secondary_emails"
    __table_args__ = (
        db.UniqueConstraint("user_id", "email", name="uq_secondary_emails_user_email"),
        db.Index("ix_secondary_emails_email", "email"),
        db.Index("ix_secondary_emails_user_domain", "user_id", "domain"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    email = db.Column(db.String(255), nullable=False)
    domain = db.Column(db.String(255), nullable=False)

    verified_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    user = db.relationship(
        "User",
        backref=db.backref("secondary_emails", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "domain": self.domain,
            "verified_at": to_utc_z(self.verified_at),
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer-token sessions.

    SECURITY: Only the SHA-256 hash of the token is stored. Sessions expire
    absolutely (expires_at) and on inactivity (last_used_at + idle timeout).
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_revoked", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime, nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    user = db.relationship(
        "User",
        backref=db.backref("session_tokens", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
