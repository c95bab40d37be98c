# Overview: Service-layer operations for users; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import AttendanceEvent, AuditLog, Member, SecondaryEmail, SessionToken, User
from ..validation import ConflictError, ValidationError, normalize_email
from .audit_service import append_audit_log
from registry.time_utils import utcnow


class UserError(ValueError):
    """Raised for invalid user administration operations."""
    pass


class UserNotFoundError(UserError):
    pass


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFoundError("User not found")
    return user


def list_users(*, search: str | None = None, admins_only: bool = False, limit: int = 500) -> list[User]:
    query = db.session.query(User)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(db.or_(
            db.func.lower(User.email).like(pattern),
            db.func.lower(User.first_names).like(pattern),
            db.func.lower(User.last_name).like(pattern),
        ))
    if admins_only:
        query = query.filter(User.is_admin.is_(True))
    return query.order_by(User.last_name.asc(), User.first_names.asc(), User.id.asc()).limit(limit).all()


def create_user(
    *,
    email: str,
    first_names: str | None = None,
    last_name: str | None = None,
    home_municipality: str | None = None,
    preferred_language: str = "unspecified",
    is_admin: bool = False,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> User:
    email = normalize_email(email)
    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError("A user with this email already exists")

    user = User(
        email=email,
        first_names=first_names,
        last_name=last_name,
        home_municipality=home_municipality,
        preferred_language=preferred_language,
        is_admin=is_admin,
        created_at=utcnow(),
    )
    db.session.add(user)
    db.session.flush()

    append_audit_log(
        action="user.create",
        actor_user_id=actor_user_id,
        target_type="user",
        target_id=user.id,
        metadata={"email": email, "is_admin": is_admin},
    )
    if commit:
        db.session.commit()
    return user


def update_user(user_id: int, patch: dict, *, actor_user_id: int | None = None) -> User:
    """Apply a validated patch (see validation.ADMIN_USER_POLICY)."""
    user = get_user(user_id)

    if "email" in patch and patch["email"] != user.email:
        taken = db.session.query(User.id).filter(User.email == patch["email"], User.id != user_id).first()
        if taken:
            raise ConflictError("A user with this email already exists")

    if "is_admin" in patch and not patch["is_admin"] and user.is_admin:
        _guard_demotion(user, actor_user_id)

    changed = {}
    for key, value in patch.items():
        if getattr(user, key) != value:
            changed[key] = value
            setattr(user, key, value)

    if changed:
        append_audit_log(
            action="user.update",
            actor_user_id=actor_user_id,
            target_type="user",
            target_id=user.id,
            metadata={"fields": sorted(changed)},
        )
    db.session.commit()
    return user


def _guard_demotion(user: User, actor_user_id: int | None) -> None:
    if actor_user_id is not None and actor_user_id == user.id:
        raise UserError("You cannot demote yourself")
    admin_count = db.session.query(User).filter(User.is_admin.is_(True)).count()
    if admin_count <= 1:
        raise UserError("Cannot demote the last admin")


def set_admin(user_id: int, is_admin: bool, *, actor_user_id: int | None = None) -> User:
    user = get_user(user_id)
    if is_admin and user.is_admin:
        raise UserError("User is already an admin")
    if not is_admin and not user.is_admin:
        raise UserError("User is not an admin")
    if not is_admin:
        _guard_demotion(user, actor_user_id)

    user.is_admin = is_admin
    append_audit_log(
        action="user.promote_to_admin" if is_admin else "user.demote_from_admin",
        actor_user_id=actor_user_id,
        target_type="user",
        target_id=user.id,
        metadata={"email": user.email},
    )
    db.session.commit()
    return user


def delete_user(user_id: int, *, actor_user_id: int | None = None) -> None:
    """Delete a user and everything hanging off them (members, emails, attendance)."""
    user = get_user(user_id)
    if actor_user_id is not None and actor_user_id == user_id:
        raise UserError("You cannot delete yourself")

    append_audit_log(
        action="user.delete",
        actor_user_id=actor_user_id,
        target_type="user",
        target_id=user.id,
        metadata={"email": user.email},
    )
    db.session.delete(user)
    db.session.commit()


def merge_users(
    *,
    primary_user_id: int,
    secondary_user_id: int,
    confirm_primary_email: str,
    confirm_secondary_email: str,
    actor_user_id: int | None = None,
) -> User:
    """
    Fold a duplicate account into another.

    The secondary user's primary email becomes a verified, non-expiring
    secondary email of the primary user; members, secondary emails, sessions,
    attendance and audit references move over; the secondary user is deleted. Refused
    if both users hold a member record for the same period.
    """
    if primary_user_id == secondary_user_id:
        raise UserError("Cannot merge a user with themselves")

    primary = db.session.get(User, primary_user_id)
    if primary is None:
        raise UserNotFoundError("Primary user not found")
    secondary = db.session.get(User, secondary_user_id)
    if secondary is None:
        raise UserNotFoundError("Secondary user not found")

    if primary.email.lower() != (confirm_primary_email or "").strip().lower():
        raise ValidationError("Primary email confirmation does not match")
    if secondary.email.lower() != (confirm_secondary_email or "").strip().lower():
        raise ValidationError("Secondary email confirmation does not match")

    primary_periods = {
        m.membership_id for m in db.session.query(Member).filter_by(user_id=primary_user_id).all()
    }
    secondary_members = db.session.query(Member).filter_by(user_id=secondary_user_id).all()
    for member in secondary_members:
        if member.membership_id in primary_periods:
            raise UserError(
                f"Cannot merge: both users have a membership for period {member.membership_id}"
            )

    now = utcnow()
    secondary_email = secondary.email

    moved_emails = db.session.query(SecondaryEmail).filter_by(user_id=secondary_user_id).all()
    for row in moved_emails:
        row.user_id = primary_user_id
    for member in secondary_members:
        member.user_id = primary_user_id
        member.updated_at = now
    db.session.query(SessionToken).filter_by(user_id=secondary_user_id).update(
        {SessionToken.user_id: primary_user_id}, synchronize_session=False
    )
    db.session.query(AuditLog).filter_by(actor_user_id=secondary_user_id).update(
        {AuditLog.actor_user_id: primary_user_id}, synchronize_session=False
    )
    db.session.query(AttendanceEvent).filter_by(user_id=secondary_user_id).update(
        {AttendanceEvent.user_id: primary_user_id}, synchronize_session=False
    )
    db.session.query(AttendanceEvent).filter_by(recorded_by_user_id=secondary_user_id).update(
        {AttendanceEvent.recorded_by_user_id: primary_user_id}, synchronize_session=False
    )
    db.session.flush()

    db.session.delete(secondary)
    db.session.flush()

    db.session.add(SecondaryEmail(
        user_id=primary_user_id,
        email=secondary_email,
        domain=secondary_email.rsplit("@", 1)[1],
        verified_at=now,
        expires_at=None,
        created_at=now,
    ))

    append_audit_log(
        action="user.merge",
        actor_user_id=actor_user_id,
        target_type="user",
        target_id=primary_user_id,
        metadata={
            "primary_user_email": primary.email,
            "secondary_user_email": secondary_email,
            "secondary_user_id": secondary_user_id,
            "moved_members_count": len(secondary_members),
            "moved_secondary_emails_count": len(moved_emails),
        },
    )
    db.session.commit()
    return primary
