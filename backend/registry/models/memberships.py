from __future__ import annotations

from ..extensions import db
from registry.time_utils import to_utc_z


class MembershipType(db.Model):
    """
    Category of membership (e.g. regular, supporting).

    name/description are locale -> text maps: {"fi": "...", "en": "..."}.
    """
    __tablename__ = "membership_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.JSON, nullable=False)
    description = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    def localized_name(self, locale: str = "fi") -> str:
        names = self.name or {}
        return names.get(locale) or names.get("fi") or "Membership"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Membership(db.Model):
    """
    One purchasable period of a membership type.

    WHY: Consecutive periods of the same type form the renewal chain that
    auto-approval walks (see approval_service).
    """
    __tablename__ = "memberships"
    __table_args__ = (
        db.CheckConstraint("end_time > start_time", name="ck_memberships_time_order"),
        db.Index("ix_memberships_type_end", "membership_type_id", "end_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    membership_type_id = db.Column(db.Integer, db.ForeignKey("membership_types.id"), nullable=False, index=True)

    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    # Opaque price reference at the payment provider
    price_reference = db.Column(db.String(255), nullable=True)
    requires_student_verification = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    membership_type = db.relationship("MembershipType", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "membership_type_id": self.membership_type_id,
            "membership_type": self.membership_type.to_dict() if self.membership_type else None,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "price_reference": self.price_reference,
            "requires_student_verification": self.requires_student_verification,
            "created_at": to_utc_z(self.created_at),
        }


class Member(db.Model):
    """
    A user's holding of one membership period.

    STATUS: awaiting_payment, awaiting_approval, active, resigned, rejected.
    Every change goes through member_status_service; nothing writes status
    directly.
    """
    __tablename__ = "members"
    __table_args__ = (
        db.UniqueConstraint("user_id", "membership_id", name="uq_members_user_membership"),
        db.Index("ix_members_status", "status"),
        db.Index("ix_members_membership_status", "membership_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    membership_id = db.Column(db.Integer, db.ForeignKey("memberships.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False)

    payment_session_id = db.Column(db.String(255), nullable=True, unique=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship("User", backref=db.backref("members", lazy=True, cascade="all, delete-orphan"))
    membership = db.relationship("Membership", backref=db.backref("members", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "membership_id": self.membership_id,
            "membership": self.membership.to_dict() if self.membership else None,
            "status": self.status,
            "payment_session_id": self.payment_session_id,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
