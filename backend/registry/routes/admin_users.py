# Overview: Flask API routes for user administration; parses input and returns JSON responses.

"""
Admin routes for user management.

Provides endpoints for:
- User listing, editing and deletion
- Board (admin) role promotion and demotion
- Merging duplicate accounts
- Verifying a user's secondary email on their behalf
- Reading the audit log
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..models import User
from ..services import audit_service, secondary_email_service, user_service
from ..services.secondary_email_service import SecondaryEmailError
from ..services.user_service import UserError, UserNotFoundError
from ..validation import (
    ADMIN_USER_POLICY,
    ConflictError,
    ValidationError,
    enforce_rules_user,
    validate_payload,
)


admin_users_bp = Blueprint("admin_users", __name__, url_prefix="/api/admin")


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@admin_users_bp.get("/users")
@require_auth
@require_admin
def list_users_route():
    """
    Query params:
    - search: matches email or name
    - admins_only: bool (default false)
    - limit: int (default 500)
    """
    search = request.args.get("search")
    admins_only = request.args.get("admins_only", "false").lower() == "true"
    limit = min(max(request.args.get("limit", 500, type=int), 1), 2000)

    users = user_service.list_users(search=search, admins_only=admins_only, limit=limit)
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)})


@admin_users_bp.get("/users/<int:user_id>")
@require_auth
@require_admin
def get_user_route(user_id: int):
    try:
        user = user_service.get_user(user_id)
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    data = user.to_dict()
    data["members"] = [m.to_dict() for m in user.members]
    data["secondary_emails"] = [
        {**row.to_dict(), "is_valid": secondary_email_service.is_secondary_email_valid(row)}
        for row in secondary_email_service.list_secondary_emails(user.id)
    ]
    return jsonify({"user": data})


@admin_users_bp.patch("/users/<int:user_id>")
@require_auth
@require_admin
def update_user_route(user_id: int):
    try:
        patch = validate_payload(
            model=User,
            payload=request.get_json(silent=True),
            policy=ADMIN_USER_POLICY,
            partial=True,
        )
        enforce_rules_user(patch)
        user = user_service.update_user(user_id, patch, actor_user_id=g.current_user.id)
        return jsonify({"user": user.to_dict()})
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except (ValidationError, UserError) as e:
        return jsonify({"error": str(e)}), 400


@admin_users_bp.delete("/users/<int:user_id>")
@require_auth
@require_admin
def delete_user_route(user_id: int):
    try:
        user_service.delete_user(user_id, actor_user_id=g.current_user.id)
        return jsonify({"message": "User deleted"})
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except UserError as e:
        return jsonify({"error": str(e)}), 400


@admin_users_bp.post("/users/<int:user_id>/admin")
@require_auth
@require_admin
def set_admin_route(user_id: int):
    """
    Request body:
    - is_admin: bool (required)
    """
    data = request.get_json(silent=True) or {}
    is_admin = data.get("is_admin")
    if not isinstance(is_admin, bool):
        return jsonify({"error": "is_admin must be a boolean"}), 400

    try:
        user = user_service.set_admin(user_id, is_admin, actor_user_id=g.current_user.id)
        return jsonify({"user": user.to_dict()})
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except UserError as e:
        return jsonify({"error": str(e)}), 400


@admin_users_bp.post("/users/merge")
@require_auth
@require_admin
def merge_users_route():
    """
    Fold a duplicate account into another.

    Request body:
    - primary_user_id, secondary_user_id: int (required)
    - confirm_primary_email, confirm_secondary_email: str (required; must match)
    """
    data = request.get_json(silent=True) or {}
    primary_user_id = data.get("primary_user_id")
    secondary_user_id = data.get("secondary_user_id")
    if not isinstance(primary_user_id, int) or not isinstance(secondary_user_id, int):
        return jsonify({"error": "primary_user_id and secondary_user_id must be integers"}), 400

    try:
        user = user_service.merge_users(
            primary_user_id=primary_user_id,
            secondary_user_id=secondary_user_id,
            confirm_primary_email=data.get("confirm_primary_email") or "",
            confirm_secondary_email=data.get("confirm_secondary_email") or "",
            actor_user_id=g.current_user.id,
        )
        return jsonify({"user": user.to_dict()})
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, UserError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to merge users")
        return jsonify({"error": "Internal server error"}), 500


@admin_users_bp.post("/users/<int:user_id>/secondary-emails/<int:email_id>/verify")
@require_auth
@require_admin
def verify_secondary_email_route(user_id: int, email_id: int):
    try:
        row = secondary_email_service.mark_verified(email_id, user_id, actor_user_id=g.current_user.id)
        return jsonify({"secondary_email": row.to_dict()})
    except SecondaryEmailError as e:
        return jsonify({"error": str(e)}), 404


# =============================================================================
# AUDIT LOG
# =============================================================================

@admin_users_bp.get("/audit-logs")
@require_auth
@require_admin
def list_audit_logs_route():
    """
    Query params:
    - action_prefix: e.g. "member." or "user.merge"
    - target_type, target_id
    - limit: int (default 200)
    """
    limit = min(max(request.args.get("limit", 200, type=int), 1), 1000)
    logs = audit_service.list_audit_logs(
        action_prefix=request.args.get("action_prefix"),
        target_type=request.args.get("target_type"),
        target_id=request.args.get("target_id"),
        limit=limit,
    )
    return jsonify({"audit_logs": [entry.to_dict() for entry in logs], "count": len(logs)})
