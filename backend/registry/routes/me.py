# Overview: Flask API routes for member self-service; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import Member, User
from ..decorators import require_auth
from ..services import qr_token_service, secondary_email_service, user_service
from ..services.secondary_email_service import SecondaryEmailError
from ..validation import (
    ConflictError,
    USER_PROFILE_POLICY,
    ValidationError,
    enforce_rules_user,
    validate_payload,
)


me_bp = Blueprint("me", __name__, url_prefix="/api/me")


@me_bp.get("")
@require_auth
def get_me_route():
    return jsonify({"user": g.current_user.to_dict()})


@me_bp.patch("/profile")
@require_auth
def update_profile_route():
    try:
        patch = validate_payload(
            model=User,
            payload=request.get_json(silent=True),
            policy=USER_PROFILE_POLICY,
            partial=True,
        )
        enforce_rules_user(patch)
        user = user_service.update_user(g.current_user.id, patch, actor_user_id=g.current_user.id)
        return jsonify({"user": user.to_dict()})
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409


@me_bp.get("/memberships")
@require_auth
def list_my_memberships_route():
    members = db.session.query(Member).filter_by(user_id=g.current_user.id).order_by(
        Member.created_at.desc(), Member.id.desc()
    ).all()
    return jsonify({"members": [m.to_dict() for m in members], "count": len(members)})


@me_bp.get("/qr-token")
@require_auth
def get_qr_token_route():
    """The token encoded in the member's attendance QR code (issued on first request)."""
    token = qr_token_service.ensure_user_has_qr_token(g.current_user.id)
    return jsonify({"qr_token": token})


@me_bp.post("/qr-token/regenerate")
@require_auth
def regenerate_qr_token_route():
    token = qr_token_service.regenerate_qr_token(g.current_user.id)
    current_app.logger.info("User %s regenerated their QR token", g.current_user.id)
    return jsonify({"qr_token": token})


# =============================================================================
# SECONDARY EMAILS
# =============================================================================

@me_bp.get("/secondary-emails")
@require_auth
def list_secondary_emails_route():
    rows = secondary_email_service.list_secondary_emails(g.current_user.id)
    return jsonify({
        "secondary_emails": [
            {**row.to_dict(), "is_valid": secondary_email_service.is_secondary_email_valid(row)}
            for row in rows
        ],
    })


@me_bp.post("/secondary-emails")
@require_auth
def add_secondary_email_route():
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    if not email:
        return jsonify({"error": "email is required"}), 400

    try:
        row = secondary_email_service.create_secondary_email(g.current_user.id, email)
        return jsonify({"secondary_email": row.to_dict()}), 201
    except SecondaryEmailError as e:
        return jsonify({"error": str(e)}), 400


@me_bp.delete("/secondary-emails/<int:email_id>")
@require_auth
def delete_secondary_email_route(email_id: int):
    try:
        secondary_email_service.delete_secondary_email(email_id, g.current_user.id)
        return jsonify({"message": "Secondary email deleted"})
    except SecondaryEmailError as e:
        return jsonify({"error": str(e)}), 404


@me_bp.post("/secondary-emails/<int:email_id>/make-primary")
@require_auth
def make_primary_route(email_id: int):
    try:
        user = secondary_email_service.change_primary_email(email_id, g.current_user.id)
        return jsonify({"user": user.to_dict()})
    except SecondaryEmailError as e:
        return jsonify({"error": str(e)}), 400
