"""
Purchase and payment webhook tests.

Verifies:
- Purchase refuses overlapping periods and missing student verification
- Signed webhooks move awaiting_payment to active (renewal) or awaiting_approval
- Failed payments reject; redeliveries and late events are no-ops
- Bad signatures and malformed bodies are refused
"""

import json
from datetime import datetime

import pytest

from registry.models import AuditLog, Member, PaymentWebhookEvent
from registry.services import payment_service
from registry.services.approval_service import EligibilityEvaluationError
from registry.services.payment_service import PaymentWebhookError, PurchaseError

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def p2024(make_membership):
    return make_membership(datetime(2024, 1, 1), datetime(2025, 1, 1))


@pytest.fixture
def p2025(make_membership):
    return make_membership(datetime(2025, 1, 1), datetime(2026, 1, 1))


def webhook_body(event_id: str, event_type: str, payment_session_id: str) -> bytes:
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"payment_session_id": payment_session_id},
    }).encode("utf-8")


def signed(body: bytes) -> dict:
    return {payment_service.SIGNATURE_HEADER: payment_service.sign_payload(body, WEBHOOK_SECRET)}


# =============================================================================
# PURCHASE
# =============================================================================


class TestStartPurchase:

    def test_creates_awaiting_payment(self, db_session, member_user, p2025):
        member = payment_service.start_purchase(member_user.id, p2025.id)

        assert member.status == "awaiting_payment"
        assert member.payment_session_id.startswith("ps_")
        assert db_session.query(AuditLog).filter_by(action="member.purchase_started").count() == 1

    def test_repeat_purchase_returns_pending_record(self, db_session, member_user, p2025):
        first = payment_service.start_purchase(member_user.id, p2025.id)
        second = payment_service.start_purchase(member_user.id, p2025.id)
        assert first.id == second.id
        assert db_session.query(Member).count() == 1

    def test_overlap_with_existing_membership(self, db_session, member_user, make_member, make_membership, p2025):
        make_member(member_user, p2025, "active")
        overlapping = make_membership(datetime(2025, 6, 1), datetime(2026, 6, 1))

        with pytest.raises(PurchaseError, match="already have a membership"):
            payment_service.start_purchase(member_user.id, overlapping.id)

    def test_rejected_same_period_blocks_repurchase(self, db_session, member_user, make_member, p2025):
        make_member(member_user, p2025, "rejected")
        with pytest.raises(PurchaseError, match="rejected"):
            payment_service.start_purchase(member_user.id, p2025.id)

    def test_student_period_requires_student_email(self, db_session, member_user, make_membership):
        student = make_membership(datetime(2025, 1, 1), datetime(2026, 1, 1), requires_student_verification=True)
        with pytest.raises(PurchaseError, match="Student verification required"):
            payment_service.start_purchase(member_user.id, student.id)

    def test_unknown_membership(self, db_session, member_user):
        with pytest.raises(PurchaseError, match="non-existent"):
            payment_service.start_purchase(member_user.id, 999)

    def test_preview_reports_auto_approval(self, db_session, member_user, make_member, p2024, p2025):
        make_member(member_user, p2024, "active")
        preview = payment_service.purchase_preview(member_user.id, p2025.id)
        assert preview["can_purchase"] is True
        assert preview["will_auto_approve"] is True

    def test_retry_issues_new_session(self, db_session, member_user, p2025):
        member = payment_service.start_purchase(member_user.id, p2025.id)
        old_session = member.payment_session_id

        retried = payment_service.retry_payment(member.id, member_user.id)
        assert retried.payment_session_id != old_session

    def test_retry_refused_once_paid(self, db_session, member_user, make_member, p2025):
        member = make_member(member_user, p2025, "active")
        with pytest.raises(PurchaseError, match="not awaiting payment"):
            payment_service.retry_payment(member.id, member_user.id)


# =============================================================================
# WEBHOOKS
# =============================================================================


class TestWebhooks:

    def test_renewal_is_auto_approved(self, db_session, member_user, make_member, p2024, p2025):
        make_member(member_user, p2024, "active")
        member = payment_service.start_purchase(member_user.id, p2025.id)
        body = webhook_body("evt_1", "payment.succeeded", member.payment_session_id)

        result = payment_service.handle_webhook(body, signed(body)[payment_service.SIGNATURE_HEADER])

        assert result["status"] == "processed"
        assert result["member_status"] == "active"
        assert db_session.query(AuditLog).filter_by(action="member.auto_approved").count() == 1

    def test_first_membership_waits_for_board(self, db_session, member_user, p2025):
        member = payment_service.start_purchase(member_user.id, p2025.id)
        body = webhook_body("evt_1", "payment.succeeded", member.payment_session_id)

        result = payment_service.handle_webhook(body, signed(body)[payment_service.SIGNATURE_HEADER])

        assert result["member_status"] == "awaiting_approval"

    def test_failed_payment_rejects(self, db_session, member_user, p2025):
        member = payment_service.start_purchase(member_user.id, p2025.id)
        body = webhook_body("evt_1", "payment.failed", member.payment_session_id)

        result = payment_service.handle_webhook(body, signed(body)[payment_service.SIGNATURE_HEADER])

        assert result["member_status"] == "rejected"

    def test_redelivery_is_duplicate(self, db_session, member_user, p2025):
        member = payment_service.start_purchase(member_user.id, p2025.id)
        body = webhook_body("evt_1", "payment.succeeded", member.payment_session_id)
        signature = signed(body)[payment_service.SIGNATURE_HEADER]

        payment_service.handle_webhook(body, signature)
        result = payment_service.handle_webhook(body, signature)

        assert result["status"] == "duplicate"
        assert db_session.query(PaymentWebhookEvent).count() == 1

    def test_late_failure_after_success_is_ignored(self, db_session, member_user, p2025):
        member = payment_service.start_purchase(member_user.id, p2025.id)
        ok = webhook_body("evt_1", "payment.succeeded", member.payment_session_id)
        late = webhook_body("evt_2", "payment.failed", member.payment_session_id)

        payment_service.handle_webhook(ok, signed(ok)[payment_service.SIGNATURE_HEADER])
        result = payment_service.handle_webhook(late, signed(late)[payment_service.SIGNATURE_HEADER])

        assert result["member_status"] == "awaiting_approval"

    def test_eligibility_failure_falls_back_to_board(self, db_session, monkeypatch, member_user, make_member, p2024, p2025):
        make_member(member_user, p2024, "active")
        member = payment_service.start_purchase(member_user.id, p2025.id)

        def failing_check(*args, **kwargs):
            raise EligibilityEvaluationError("database unavailable")

        monkeypatch.setattr(payment_service, "check_auto_approval_eligibility", failing_check)
        body = webhook_body("evt_1", "payment.succeeded", member.payment_session_id)
        signature = signed(body)[payment_service.SIGNATURE_HEADER]

        result = payment_service.handle_webhook(body, signature)

        assert result["member_status"] == "awaiting_approval"
        db_session.expire_all()
        assert db_session.query(PaymentWebhookEvent).filter_by(provider_event_id="evt_1").count() == 1
        assert db_session.query(AuditLog).filter_by(action="member.auto_approved").count() == 0
        assert payment_service.handle_webhook(body, signature)["status"] == "duplicate"

    def test_unhandled_event_type(self, db_session):
        body = json.dumps({"id": "evt_9", "type": "payment.refunded", "data": {}}).encode("utf-8")
        result = payment_service.handle_webhook(body, signed(body)[payment_service.SIGNATURE_HEADER])
        assert result["status"] == "ignored"

    def test_bad_signature(self, db_session):
        body = webhook_body("evt_1", "payment.succeeded", "ps_x")
        with pytest.raises(PaymentWebhookError, match="Invalid signature"):
            payment_service.handle_webhook(body, "sha256=deadbeef")
        assert db_session.query(PaymentWebhookEvent).count() == 0

    def test_unknown_session(self, db_session):
        body = webhook_body("evt_1", "payment.succeeded", "ps_unknown")
        with pytest.raises(PaymentWebhookError, match="Unknown payment session"):
            payment_service.handle_webhook(body, signed(body)[payment_service.SIGNATURE_HEADER])
        assert db_session.query(PaymentWebhookEvent).count() == 0

    def test_webhook_route(self, client, db_session, member_user, p2025):
        member = payment_service.start_purchase(member_user.id, p2025.id)
        body = webhook_body("evt_1", "payment.succeeded", member.payment_session_id)

        response = client.post(
            '/api/payments/webhook',
            data=body,
            content_type='application/json',
            headers=signed(body),
        )
        assert response.status_code == 200
        assert response.get_json()["member_status"] == "awaiting_approval"

        unsigned = client.post('/api/payments/webhook', data=body, content_type='application/json')
        assert unsigned.status_code == 400


class TestPurchaseRoutes:

    def test_purchase_requires_auth(self, client, db_session):
        response = client.post('/api/purchases', json={"membership_id": 1})
        assert response.status_code == 401

    def test_purchase_validates_membership_id(self, client, member_headers):
        response = client.post('/api/purchases', json={"membership_id": "1"}, headers=member_headers)
        assert response.status_code == 400

    def test_purchase_created(self, client, member_headers, p2025):
        response = client.post('/api/purchases', json={"membership_id": p2025.id}, headers=member_headers)
        assert response.status_code == 201
        data = response.get_json()
        assert data["member"]["status"] == "awaiting_payment"
        assert data["payment_session_id"] == data["member"]["payment_session_id"]
