# Overview: Service-layer operations for membership purchases and payment webhooks; encapsulates business logic and database work.

"""
Membership Purchase & Payment Service

FLOW:
1. start_purchase: user picks a period. Refused when it overlaps the user's
   latest existing membership, or when it requires student verification the
   user cannot provide. Creates a Member in awaiting_payment bound to an
   opaque payment session reference.
2. The payment provider reports the outcome through a signed webhook.
3. fulfill_payment: awaiting_payment -> active when auto-approval applies,
   otherwise awaiting_approval (board decides).
   cancel_payment: awaiting_payment -> rejected.

The provider itself is not integrated here; payment_session_id is an opaque
reference that the provider echoes back in webhook payloads.

WEBHOOKS:
- Body signed with HMAC-SHA256 over the raw bytes using
  PAYMENT_WEBHOOK_SECRET; header "X-Payment-Signature: sha256=<hex>".
- Event ids are recorded in payment_webhook_events; redeliveries are no-ops.
- A member no longer in awaiting_payment is left untouched (late or
  duplicate deliveries).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Member, Membership, PaymentWebhookEvent, User
from .approval_service import (
    EligibilityEvaluationError,
    check_auto_approval_eligibility,
    has_valid_student_email,
)
from .audit_service import append_audit_log
from .concurrency import lock_for_update
from .member_status_service import apply_transition
from registry.time_utils import utcnow


SIGNATURE_HEADER = "X-Payment-Signature"

EVENT_SUCCEEDED = "payment.succeeded"
EVENT_FAILED = "payment.failed"
EVENT_EXPIRED = "payment.expired"

# Records that do not occupy a period for overlap purposes
NON_BLOCKING_STATUSES = ("rejected",)


class PurchaseError(ValueError):
    """Raised when a membership cannot be purchased."""
    pass


class PaymentWebhookError(ValueError):
    """Raised for unverifiable or malformed webhook deliveries."""
    pass


def generate_payment_session_id() -> str:
    return f"ps_{secrets.token_hex(16)}"


def latest_membership_end(user_id: int) -> datetime | None:
    row = db.session.query(db.func.max(Membership.end_time)).join(
        Member, Member.membership_id == Membership.id
    ).filter(
        Member.user_id == user_id,
        Member.status.notin_(NON_BLOCKING_STATUSES),
    ).scalar()
    return row


def _load_purchase_target(user_id: int, membership_id: int) -> tuple[User, Membership]:
    user = db.session.get(User, user_id)
    membership = db.session.get(Membership, membership_id)
    if user is None or membership is None:
        raise PurchaseError("Cannot purchase non-existent membership and/or user")
    return user, membership


def _eligibility_or_manual(user_id: int, membership: Membership) -> bool:
    # Savepoint: a failed read must not discard rows already flushed by the caller
    nested = db.session.begin_nested()
    try:
        eligible = check_auto_approval_eligibility(db.session, user_id, membership)
    except EligibilityEvaluationError:
        current_app.logger.exception(
            "Auto-approval check failed for user %s, membership %s; falling back to manual approval",
            user_id, membership.id,
        )
        nested.rollback()
        return False
    nested.commit()
    return eligible


def purchase_preview(user_id: int, membership_id: int) -> dict:
    """What would happen if the user bought this period now."""
    user, membership = _load_purchase_target(user_id, membership_id)

    reason = None
    latest_end = latest_membership_end(user.id)
    if latest_end is not None and membership.start_time < latest_end:
        reason = "You already have a membership during this period"

    student_ok = True
    if membership.requires_student_verification:
        student_ok = has_valid_student_email(db.session, user.id)
        if not student_ok and reason is None:
            reason = "Student verification required. Please add and verify your student email address."

    return {
        "membership_id": membership.id,
        "can_purchase": reason is None,
        "reason": reason,
        "requires_student_verification": membership.requires_student_verification,
        "has_valid_student_email": student_ok,
        "will_auto_approve": _eligibility_or_manual(user.id, membership) if reason is None else False,
    }


def start_purchase(user_id: int, membership_id: int) -> Member:
    user, membership = _load_purchase_target(user_id, membership_id)

    existing = db.session.query(Member).filter_by(user_id=user.id, membership_id=membership.id).first()
    if existing is not None:
        if existing.status == "awaiting_payment":
            return existing
        if existing.status == "rejected":
            raise PurchaseError("A previous application for this period was rejected; contact the board")
        raise PurchaseError("You already have a membership during this period")

    latest_end = latest_membership_end(user.id)
    if latest_end is not None and membership.start_time < latest_end:
        raise PurchaseError("You already have a membership during this period")

    if membership.requires_student_verification and not has_valid_student_email(db.session, user.id):
        raise PurchaseError(
            "Student verification required. Please add and verify your student email address."
        )

    now = utcnow()
    member = Member(
        user_id=user.id,
        membership_id=membership.id,
        status="awaiting_payment",
        payment_session_id=generate_payment_session_id(),
        created_at=now,
        updated_at=now,
    )
    db.session.add(member)
    db.session.flush()

    append_audit_log(
        action="member.purchase_started",
        actor_user_id=user.id,
        target_type="member",
        target_id=member.id,
        metadata={"membership_id": membership.id, "payment_session_id": member.payment_session_id},
    )
    db.session.commit()
    return member


def retry_payment(member_id: int, user_id: int) -> Member:
    """Issue a fresh payment session for a purchase that is still unpaid."""
    member = db.session.query(Member).filter_by(id=member_id, user_id=user_id).first()
    if member is None:
        raise PurchaseError("Member record not found")
    if member.status != "awaiting_payment":
        raise PurchaseError("This membership is not awaiting payment")

    member.payment_session_id = generate_payment_session_id()
    member.updated_at = utcnow()
    db.session.commit()
    return member


def fulfill_payment(payment_session_id: str) -> Member:
    member = lock_for_update(
        db.session.query(Member).filter_by(payment_session_id=payment_session_id)
    ).first()
    if member is None:
        raise PaymentWebhookError("Unknown payment session")
    if member.status != "awaiting_payment":
        current_app.logger.info(
            "Ignoring payment completion for member %s in status %s", member.id, member.status
        )
        return member

    eligible = _eligibility_or_manual(member.user_id, member.membership)
    target = "active" if eligible else "awaiting_approval"
    apply_transition(member, target)

    append_audit_log(
        action="member.auto_approved" if eligible else "member.payment_completed",
        target_type="member",
        target_id=member.id,
        metadata={"payment_session_id": payment_session_id, "to_status": target},
    )
    db.session.commit()

    current_app.logger.info(
        "Payment completed for member %s; %s",
        member.id, "auto-approved" if eligible else "awaiting board approval",
    )
    return member


def cancel_payment(payment_session_id: str, *, reason: str) -> Member:
    member = lock_for_update(
        db.session.query(Member).filter_by(payment_session_id=payment_session_id)
    ).first()
    if member is None:
        raise PaymentWebhookError("Unknown payment session")
    if member.status != "awaiting_payment":
        return member

    apply_transition(member, "rejected")
    append_audit_log(
        action="member.payment_failed",
        target_type="member",
        target_id=member.id,
        metadata={"payment_session_id": payment_session_id, "reason": reason},
    )
    db.session.commit()
    return member


def sign_payload(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None) -> None:
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    if not secret:
        raise PaymentWebhookError("Payment webhooks are not configured")
    if not signature or not hmac.compare_digest(sign_payload(body, secret), signature.strip()):
        raise PaymentWebhookError("Invalid signature")


def handle_webhook(body: bytes, signature: str | None) -> dict:
    """
    Verify, de-duplicate and dispatch one webhook delivery.

    Returns {"status": "processed" | "duplicate" | "ignored", ...}.
    """
    verify_signature(body, signature)

    try:
        event = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PaymentWebhookError("Malformed payload") from e

    if not isinstance(event, dict):
        raise PaymentWebhookError("Malformed payload")

    event_id = event.get("id")
    event_type = event.get("type")
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    payment_session_id = data.get("payment_session_id")
    if not event_id or not event_type:
        raise PaymentWebhookError("Event id and type are required")

    db.session.add(PaymentWebhookEvent(provider_event_id=str(event_id), event_type=str(event_type), received_at=utcnow()))
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("Duplicate payment webhook %s ignored", event_id)
        return {"status": "duplicate", "event_id": event_id}

    if event_type not in (EVENT_SUCCEEDED, EVENT_FAILED, EVENT_EXPIRED):
        db.session.commit()
        return {"status": "ignored", "event_id": event_id}

    if not payment_session_id:
        db.session.rollback()
        raise PaymentWebhookError("payment_session_id is required")

    try:
        if event_type == EVENT_SUCCEEDED:
            member = fulfill_payment(payment_session_id)
        else:
            member = cancel_payment(payment_session_id, reason=event_type)
    except PaymentWebhookError:
        db.session.rollback()
        raise

    # late deliveries leave the member untouched but the event id is still recorded
    db.session.commit()
    return {"status": "processed", "event_id": event_id, "member_id": member.id, "member_status": member.status}
