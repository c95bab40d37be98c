# Overview: Flask API routes for the membership catalog; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_admin
from ..models import Membership, MembershipType
from ..services import membership_service
from ..services.membership_service import MembershipError, MembershipNotFoundError
from ..validation import (
    MEMBERSHIP_POLICY,
    MEMBERSHIP_TYPE_POLICY,
    ValidationError,
    enforce_rules_membership_type,
    validate_payload,
)


admin_memberships_bp = Blueprint("admin_memberships", __name__, url_prefix="/api/admin")


# =============================================================================
# MEMBERSHIP TYPES
# =============================================================================

@admin_memberships_bp.get("/membership-types")
@require_auth
@require_admin
def list_membership_types_route():
    types = membership_service.list_membership_types()
    return jsonify({"membership_types": [t.to_dict() for t in types]})


@admin_memberships_bp.post("/membership-types")
@require_auth
@require_admin
def create_membership_type_route():
    try:
        patch = validate_payload(
            model=MembershipType,
            payload=request.get_json(silent=True),
            policy=MEMBERSHIP_TYPE_POLICY,
            partial=False,
        )
        enforce_rules_membership_type(patch)
        row = membership_service.create_membership_type(
            name=patch["name"],
            description=patch.get("description"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"membership_type": row.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@admin_memberships_bp.patch("/membership-types/<int:type_id>")
@require_auth
@require_admin
def update_membership_type_route(type_id: int):
    try:
        patch = validate_payload(
            model=MembershipType,
            payload=request.get_json(silent=True),
            policy=MEMBERSHIP_TYPE_POLICY,
            partial=True,
        )
        enforce_rules_membership_type(patch)
        row = membership_service.update_membership_type(type_id, patch, actor_user_id=g.current_user.id)
        return jsonify({"membership_type": row.to_dict()})
    except MembershipNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@admin_memberships_bp.delete("/membership-types/<int:type_id>")
@require_auth
@require_admin
def delete_membership_type_route(type_id: int):
    try:
        membership_service.delete_membership_type(type_id, actor_user_id=g.current_user.id)
        return jsonify({"message": "Membership type deleted"})
    except MembershipNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except MembershipError as e:
        return jsonify({"error": str(e)}), 409


# =============================================================================
# MEMBERSHIP PERIODS
# =============================================================================

@admin_memberships_bp.get("/memberships")
@require_auth
@require_admin
def list_memberships_route():
    membership_type_id = request.args.get("membership_type_id", type=int)
    rows = membership_service.list_memberships(membership_type_id=membership_type_id)
    return jsonify({"memberships": [m.to_dict() for m in rows]})


@admin_memberships_bp.get("/memberships/<int:membership_id>")
@require_auth
@require_admin
def get_membership_route(membership_id: int):
    try:
        row = membership_service.get_membership(membership_id)
    except MembershipNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    data = row.to_dict()
    data["member_counts"] = membership_service.member_counts_by_status(membership_id)
    return jsonify({"membership": data})


@admin_memberships_bp.post("/memberships")
@require_auth
@require_admin
def create_membership_route():
    """
    Request body:
    - membership_type_id: int (required)
    - start_time / end_time: ISO-8601 (required, end after start)
    - price_reference: str (optional; periods without one are not purchasable)
    - requires_student_verification: bool (optional)
    """
    try:
        patch = validate_payload(
            model=Membership,
            payload=request.get_json(silent=True),
            policy=MEMBERSHIP_POLICY,
            partial=False,
        )
        row = membership_service.create_membership(
            membership_type_id=patch["membership_type_id"],
            start_time=patch["start_time"],
            end_time=patch["end_time"],
            price_reference=patch.get("price_reference"),
            requires_student_verification=bool(patch.get("requires_student_verification")),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"membership": row.to_dict()}), 201
    except MembershipNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@admin_memberships_bp.patch("/memberships/<int:membership_id>")
@require_auth
@require_admin
def update_membership_route(membership_id: int):
    try:
        patch = validate_payload(
            model=Membership,
            payload=request.get_json(silent=True),
            policy=MEMBERSHIP_POLICY,
            partial=True,
        )
        row = membership_service.update_membership(membership_id, patch, actor_user_id=g.current_user.id)
        return jsonify({"membership": row.to_dict()})
    except MembershipNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@admin_memberships_bp.delete("/memberships/<int:membership_id>")
@require_auth
@require_admin
def delete_membership_route(membership_id: int):
    try:
        membership_service.delete_membership(membership_id, actor_user_id=g.current_user.id)
        return jsonify({"message": "Membership deleted"})
    except MembershipNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except MembershipError as e:
        return jsonify({"error": str(e)}), 409
