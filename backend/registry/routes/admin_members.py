# Overview: Flask API routes for board member administration; parses input and returns JSON responses.

"""
Admin member routes.

Status changes go through named actions (approve, reject, resign,
reactivate). Each action maps to a target status and the source statuses it
accepts; the state machine in member_status_service has the final word.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import Member, User
from ..decorators import require_auth, require_admin
from ..services import member_status_service
from ..services.member_status_service import (
    InvalidTransitionError,
    MEMBER_ACTIONS,
    MEMBER_STATUSES,
    MemberNotFoundError,
)


admin_members_bp = Blueprint("admin_members", __name__, url_prefix="/api/admin/members")


def _member_payload(member: Member) -> dict:
    data = member.to_dict()
    user = member.user
    data["user"] = {
        "id": user.id,
        "email": user.email,
        "name": user.display_name,
    } if user else None
    data["valid_target_statuses"] = list(member_status_service.get_valid_target_statuses(member.status))
    data["available_actions"] = member_status_service.get_available_actions(member.status)
    return data


@admin_members_bp.get("")
@require_auth
@require_admin
def list_members_route():
    """
    Query params:
    - status: filter by member status
    - membership_id: filter by period
    - search: matches email or name
    """
    status = request.args.get("status")
    membership_id = request.args.get("membership_id", type=int)
    search = (request.args.get("search") or "").strip().lower()

    if status and status not in MEMBER_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(MEMBER_STATUSES)}"}), 400

    query = db.session.query(Member).join(User, User.id == Member.user_id)
    if status:
        query = query.filter(Member.status == status)
    if membership_id:
        query = query.filter(Member.membership_id == membership_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(
            db.func.lower(User.email).like(pattern),
            db.func.lower(User.first_names).like(pattern),
            db.func.lower(User.last_name).like(pattern),
        ))

    members = query.order_by(Member.created_at.desc(), Member.id.desc()).all()
    return jsonify({"members": [_member_payload(m) for m in members], "count": len(members)})


@admin_members_bp.get("/<int:member_id>")
@require_auth
@require_admin
def get_member_route(member_id: int):
    member = db.session.get(Member, member_id)
    if not member:
        return jsonify({"error": "Member not found"}), 404
    return jsonify({"member": _member_payload(member)})


@admin_members_bp.post("/bulk")
@require_auth
@require_admin
def bulk_action_route():
    """
    Request body:
    - member_ids: list[int] (required)
    - action: approve | reject | resign | reactivate (required)

    Members that cannot take the action are skipped. 400 when none could.
    """
    data = request.get_json(silent=True) or {}
    member_ids = data.get("member_ids")
    action = data.get("action")

    if not isinstance(member_ids, list) or not member_ids:
        return jsonify({"error": "member_ids must be a non-empty list"}), 400
    if not all(isinstance(mid, int) and not isinstance(mid, bool) for mid in member_ids):
        return jsonify({"error": "member_ids must contain integers"}), 400
    if action not in MEMBER_ACTIONS:
        return jsonify({"error": f"action must be one of: {', '.join(MEMBER_ACTIONS)}"}), 400

    to_status, allowed_from = member_status_service.resolve_action(action)
    try:
        result = member_status_service.bulk_transition_members(
            member_ids,
            to_status,
            actor_user_id=g.current_user.id,
            action=action,
            allowed_from=allowed_from,
        )
    except Exception:
        current_app.logger.exception("Failed to apply bulk member action")
        return jsonify({"error": "Internal server error"}), 500

    if result.processed_count == 0:
        return jsonify({"error": "No members could be updated", **result.to_dict()}), 400

    current_app.logger.info(
        "Bulk %s by user %s: %s processed, %s skipped",
        action, g.current_user.id, result.processed_count, result.skipped_count,
    )
    return jsonify(result.to_dict())


@admin_members_bp.post("/<int:member_id>/<action>")
@require_auth
@require_admin
def member_action_route(member_id: int, action: str):
    """
    Apply a named status action.

    Request body (optional):
    - notes: str, stored in the audit log
    """
    try:
        to_status, allowed_from = member_status_service.resolve_action(action)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    data = request.get_json(silent=True) or {}
    try:
        member = member_status_service.transition_member(
            member_id,
            to_status,
            actor_user_id=g.current_user.id,
            action=action,
            allowed_from=allowed_from,
            notes=data.get("notes"),
        )
        return jsonify({"member": _member_payload(member)})
    except MemberNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidTransitionError as e:
        return jsonify({
            "error": str(e),
            "from_status": e.from_status,
            "to_status": e.to_status,
        }), 400
    except Exception:
        current_app.logger.exception("Failed to apply member action")
        return jsonify({"error": "Internal server error"}), 500
