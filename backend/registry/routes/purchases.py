# Overview: Flask API routes for membership purchases and payment webhooks; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import membership_service, payment_service
from ..services.payment_service import PaymentWebhookError, PurchaseError


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api")


@purchases_bp.get("/memberships/available")
@require_auth
def list_available_route():
    memberships = membership_service.list_purchasable_memberships()
    return jsonify({"memberships": [m.to_dict() for m in memberships]})


@purchases_bp.get("/memberships/<int:membership_id>/eligibility")
@require_auth
def eligibility_route(membership_id: int):
    try:
        preview = payment_service.purchase_preview(g.current_user.id, membership_id)
        return jsonify(preview)
    except PurchaseError as e:
        return jsonify({"error": str(e)}), 404


@purchases_bp.post("/purchases")
@require_auth
def start_purchase_route():
    """
    Request body:
    - membership_id: int (required)

    Returns the member record in awaiting_payment and the payment session
    reference to hand to the payment provider.
    """
    data = request.get_json(silent=True) or {}
    membership_id = data.get("membership_id")
    if not isinstance(membership_id, int) or isinstance(membership_id, bool):
        return jsonify({"error": "membership_id must be an integer"}), 400

    try:
        member = payment_service.start_purchase(g.current_user.id, membership_id)
        return jsonify({
            "member": member.to_dict(),
            "payment_session_id": member.payment_session_id,
        }), 201
    except PurchaseError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to start purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/purchases/<int:member_id>/retry")
@require_auth
def retry_payment_route(member_id: int):
    try:
        member = payment_service.retry_payment(member_id, g.current_user.id)
        return jsonify({
            "member": member.to_dict(),
            "payment_session_id": member.payment_session_id,
        })
    except PurchaseError as e:
        return jsonify({"error": str(e)}), 400


@purchases_bp.post("/payments/webhook")
def payment_webhook_route():
    """
    Payment provider callback. Authenticated by HMAC signature, not by session.

    Body: {"id": "...", "type": "payment.succeeded|payment.failed|payment.expired",
           "data": {"payment_session_id": "ps_..."}}
    """
    body = request.get_data()
    signature = request.headers.get(payment_service.SIGNATURE_HEADER)
    try:
        result = payment_service.handle_webhook(body, signature)
        return jsonify(result)
    except PaymentWebhookError as e:
        current_app.logger.warning("Rejected payment webhook: %s", e)
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500
