# Overview: Service-layer operations for member status; encapsulates business logic and database work.

"""
Member Status State Machine

================================================================================
PURPOSE: Single source of truth for which Member status changes are legal
================================================================================

STATE MACHINE:
    awaiting_payment  -> active              (manual / cash approval)
    awaiting_payment  -> awaiting_approval   (payment completed)
    awaiting_payment  -> rejected            (payment failed / admin reject)
    awaiting_approval -> active              (board approves)
    awaiting_approval -> rejected            (board rejects)
    active            -> resigned            (voluntary / deemed / expelled)
    resigned          -> active              (admin reactivates)
    rejected          -> active              (admin reactivates)

    awaiting_payment:  purchase initiated, payment not completed
    awaiting_approval: paid, pending board approval
    active:            approved, counts as a real member
    resigned:          WAS a member and left
    rejected:          NEVER became a member

RULES (NON-NEGOTIABLE):
1. Only the edges above are legal. Self-transitions are never legal.
2. resigned and rejected never convert into each other; they record
   mutually exclusive histories. Both reactivate to active only.
3. Every status has at least one outgoing edge (no dead ends).
4. Validation happens before any write. An illegal change never partially
   applies.
5. Bulk changes filter candidates through is_valid_transition and apply only
   the valid subset in one transaction; invalid candidates are skipped and
   reported, never fatal to the batch.

The allow-list lives in VALID_TRANSITIONS only. Pure functions at the top of
the module; persistence helpers below.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal

from ..extensions import db
from ..models import Member
from .audit_service import append_audit_log
from .concurrency import lock_for_update
from registry.time_utils import utcnow


MemberStatus = Literal["awaiting_payment", "awaiting_approval", "active", "resigned", "rejected"]

# Ordered; used for menus and validation messages
MEMBER_STATUSES: tuple[str, ...] = (
    "awaiting_payment",
    "awaiting_approval",
    "active",
    "resigned",
    "rejected",
)

VALID_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "awaiting_payment": ("active", "awaiting_approval", "rejected"),
    "awaiting_approval": ("active", "rejected"),
    "active": ("resigned",),
    "resigned": ("active",),
    "rejected": ("active",),
}

# Named admin actions: target status and the source statuses the action accepts.
# Each source -> target pair is also an edge of VALID_TRANSITIONS.
MEMBER_ACTIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "approve": ("active", ("awaiting_payment", "awaiting_approval")),
    "reject": ("rejected", ("awaiting_payment", "awaiting_approval")),
    "resign": ("resigned", ("active",)),
    "reactivate": ("active", ("resigned", "rejected")),
}


class InvalidTransitionError(ValueError):
    """
    Raised when a status change is not in the allow-list.

    Carries from_status / to_status for caller-side messaging. Always
    recoverable: reject the request and surface the message.
    """

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition: {from_status} -> {to_status}")


class MemberNotFoundError(ValueError):
    """Raised when a member id does not resolve."""
    pass


def is_valid_transition(from_status: str, to_status: str) -> bool:
    """Pure predicate over the allow-list. Unknown statuses are never valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, ())


def validate_transition(from_status: str, to_status: str) -> str:
    """
    Guard used before a persistence write.

    Returns to_status when the edge is legal, raises InvalidTransitionError
    otherwise.
    """
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def get_valid_target_statuses(from_status: str) -> tuple[str, ...]:
    """Legal next states in display order; empty only for unknown statuses."""
    return VALID_TRANSITIONS.get(from_status, ())


def get_available_actions(from_status: str) -> list[str]:
    """Admin action names that apply to a member in from_status."""
    return [
        name
        for name, (to_status, sources) in MEMBER_ACTIONS.items()
        if from_status in sources and is_valid_transition(from_status, to_status)
    ]


def resolve_action(action: str) -> tuple[str, tuple[str, ...]]:
    """Map an admin action name to (target status, accepted sources)."""
    if action not in MEMBER_ACTIONS:
        raise ValueError(
            f"Unknown member action '{action}'. Must be one of: {', '.join(MEMBER_ACTIONS)}"
        )
    return MEMBER_ACTIONS[action]


def _check_allowed(member: Member, to_status: str, allowed_from: Iterable[str] | None) -> bool:
    if allowed_from is not None and member.status not in allowed_from:
        return False
    return is_valid_transition(member.status, to_status)


def apply_transition(member: Member, to_status: str) -> Member:
    """
    Validate and apply a status change on a loaded Member without committing.

    Callers own the transaction; used by payment fulfilment and imports that
    write other rows in the same unit of work.
    """
    validate_transition(member.status, to_status)
    member.status = to_status
    member.updated_at = utcnow()
    return member


def transition_member(
    member_id: int,
    to_status: str,
    *,
    actor_user_id: int | None,
    action: str,
    allowed_from: Iterable[str] | None = None,
    notes: str | None = None,
) -> Member:
    """
    Change one member's status, with an audit row, in one transaction.

    allowed_from narrows the sources an action accepts (e.g. "approve" only
    from the awaiting states). Fails before any write.
    """
    member = lock_for_update(db.session.query(Member).filter_by(id=member_id)).first()
    if not member:
        raise MemberNotFoundError(f"Member {member_id} not found")

    from_status = member.status
    if allowed_from is not None and from_status not in allowed_from:
        raise InvalidTransitionError(from_status, to_status)

    apply_transition(member, to_status)

    append_audit_log(
        action=f"member.{action}",
        actor_user_id=actor_user_id,
        target_type="member",
        target_id=member.id,
        metadata={
            "user_id": member.user_id,
            "membership_id": member.membership_id,
            "from_status": from_status,
            "to_status": to_status,
            "notes": notes,
        },
    )

    db.session.commit()
    return member


@dataclass
class BulkTransitionResult:
    requested_count: int
    processed_ids: list[int] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return len(self.processed_ids)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_ids)

    def to_dict(self) -> dict:
        return {
            "requested_count": self.requested_count,
            "processed_count": self.processed_count,
            "skipped_count": self.skipped_count,
            "processed_ids": self.processed_ids,
            "skipped_ids": self.skipped_ids,
        }


def bulk_transition_members(
    member_ids: Iterable[int],
    to_status: str,
    *,
    actor_user_id: int | None,
    action: str,
    allowed_from: Iterable[str] | None = None,
) -> BulkTransitionResult:
    """
    Apply one status change to many members atomically.

    Candidates that cannot make the transition (or do not exist) are skipped.
    All valid updates plus one summary audit row commit together; an
    empty valid subset writes nothing.
    """
    requested = list(dict.fromkeys(int(mid) for mid in member_ids))
    allowed = tuple(allowed_from) if allowed_from is not None else None
    result = BulkTransitionResult(requested_count=len(requested))
    if not requested:
        return result

    members = lock_for_update(
        db.session.query(Member).filter(Member.id.in_(requested)).order_by(Member.id)
    ).all()
    by_id = {m.id: m for m in members}

    now = utcnow()
    for member_id in requested:
        member = by_id.get(member_id)
        if member is None or not _check_allowed(member, to_status, allowed):
            result.skipped_ids.append(member_id)
            continue
        member.status = to_status
        member.updated_at = now
        result.processed_ids.append(member_id)

    if not result.processed_ids:
        return result

    append_audit_log(
        action=f"member.bulk_{action}",
        actor_user_id=actor_user_id,
        target_type="member",
        metadata={
            "to_status": to_status,
            "member_ids": result.processed_ids,
            "requested_count": result.requested_count,
            "processed_count": result.processed_count,
        },
    )

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return result
