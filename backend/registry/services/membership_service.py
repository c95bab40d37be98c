# Overview: Service-layer operations for the membership catalog; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Member, Membership, MembershipType
from ..validation import enforce_rules_membership
from .audit_service import append_audit_log
from registry.time_utils import to_utc_z, utcnow


class MembershipError(ValueError):
    """Raised for invalid catalog operations."""
    pass


class MembershipNotFoundError(MembershipError):
    pass


# -----------------------------------------------------------------------------
# Membership types
# -----------------------------------------------------------------------------

def list_membership_types() -> list[MembershipType]:
    return db.session.query(MembershipType).order_by(MembershipType.id.asc()).all()


def get_membership_type(type_id: int) -> MembershipType:
    row = db.session.get(MembershipType, type_id)
    if row is None:
        raise MembershipNotFoundError("Membership type not found")
    return row


def create_membership_type(*, name: dict, description: dict | None = None, actor_user_id: int | None = None) -> MembershipType:
    row = MembershipType(name=name, description=description, created_at=utcnow())
    db.session.add(row)
    db.session.flush()
    append_audit_log(
        action="membership.type_create",
        actor_user_id=actor_user_id,
        target_type="membership_type",
        target_id=row.id,
        metadata={"name": name},
    )
    db.session.commit()
    return row


def update_membership_type(type_id: int, patch: dict, *, actor_user_id: int | None = None) -> MembershipType:
    row = get_membership_type(type_id)
    for key, value in patch.items():
        setattr(row, key, value)
    append_audit_log(
        action="membership.type_update",
        actor_user_id=actor_user_id,
        target_type="membership_type",
        target_id=row.id,
        metadata={"fields": sorted(patch)},
    )
    db.session.commit()
    return row


def delete_membership_type(type_id: int, *, actor_user_id: int | None = None) -> None:
    row = get_membership_type(type_id)
    in_use = db.session.query(Membership.id).filter_by(membership_type_id=type_id).first()
    if in_use:
        raise MembershipError("Cannot delete membership type that is used by existing memberships")
    append_audit_log(
        action="membership.type_delete",
        actor_user_id=actor_user_id,
        target_type="membership_type",
        target_id=row.id,
        metadata={"name": row.name},
    )
    db.session.delete(row)
    db.session.commit()


# -----------------------------------------------------------------------------
# Membership periods
# -----------------------------------------------------------------------------

def list_memberships(*, membership_type_id: int | None = None) -> list[Membership]:
    query = db.session.query(Membership)
    if membership_type_id is not None:
        query = query.filter_by(membership_type_id=membership_type_id)
    return query.order_by(Membership.start_time.desc(), Membership.id.desc()).all()


def list_purchasable_memberships(*, now: datetime | None = None) -> list[Membership]:
    """Periods that have not ended yet and carry a price reference."""
    now = now or utcnow()
    return db.session.query(Membership).filter(
        Membership.end_time > now,
        Membership.price_reference.isnot(None),
    ).order_by(Membership.start_time.asc(), Membership.id.asc()).all()


def get_membership(membership_id: int) -> Membership:
    row = db.session.get(Membership, membership_id)
    if row is None:
        raise MembershipNotFoundError("Membership not found")
    return row


def find_membership_by_type_and_start(membership_type_id: int, start_time: datetime) -> Membership | None:
    return db.session.query(Membership).filter_by(
        membership_type_id=membership_type_id,
        start_time=start_time,
    ).first()


def create_membership(
    *,
    membership_type_id: int,
    start_time: datetime,
    end_time: datetime,
    price_reference: str | None = None,
    requires_student_verification: bool = False,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> Membership:
    get_membership_type(membership_type_id)
    enforce_rules_membership({"start_time": start_time, "end_time": end_time})

    row = Membership(
        membership_type_id=membership_type_id,
        start_time=start_time,
        end_time=end_time,
        price_reference=price_reference,
        requires_student_verification=bool(requires_student_verification),
        created_at=utcnow(),
    )
    db.session.add(row)
    db.session.flush()

    append_audit_log(
        action="membership.create",
        actor_user_id=actor_user_id,
        target_type="membership",
        target_id=row.id,
        metadata={
            "membership_type_id": membership_type_id,
            "start_time": to_utc_z(start_time),
            "end_time": to_utc_z(end_time),
        },
    )
    if commit:
        db.session.commit()
    return row


def update_membership(membership_id: int, patch: dict, *, actor_user_id: int | None = None) -> Membership:
    row = get_membership(membership_id)
    if "membership_type_id" in patch:
        get_membership_type(patch["membership_type_id"])
    enforce_rules_membership(patch, current_start=row.start_time, current_end=row.end_time)

    for key, value in patch.items():
        setattr(row, key, value)

    append_audit_log(
        action="membership.update",
        actor_user_id=actor_user_id,
        target_type="membership",
        target_id=row.id,
        metadata={"fields": sorted(patch)},
    )
    db.session.commit()
    return row


def delete_membership(membership_id: int, *, actor_user_id: int | None = None) -> None:
    row = get_membership(membership_id)
    if db.session.query(Member.id).filter_by(membership_id=membership_id).first():
        raise MembershipError("Cannot delete membership with active members")

    append_audit_log(
        action="membership.delete",
        actor_user_id=actor_user_id,
        target_type="membership",
        target_id=row.id,
    )
    db.session.delete(row)
    db.session.commit()


def member_counts_by_status(membership_id: int) -> dict[str, int]:
    rows = db.session.query(Member.status, db.func.count(Member.id)).filter_by(
        membership_id=membership_id
    ).group_by(Member.status).all()
    return {status: count for status, count in rows}
