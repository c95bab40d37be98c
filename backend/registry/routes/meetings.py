# Overview: Flask API routes for meetings and attendance; parses input and returns JSON responses.

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..extensions import db
from ..models import Member
from ..services import attendance_service, meeting_service, qr_token_service
from ..services.attendance_service import AttendanceError
from ..services.meeting_service import MEETING_STATUSES, MeetingError, MeetingNotFoundError
from registry.time_utils import utcnow


meetings_bp = Blueprint("meetings", __name__, url_prefix="/api/admin")


def _meeting_payload(meeting) -> dict:
    data = meeting.to_dict()
    data["available_actions"] = meeting_service.available_actions(meeting.status)
    return data


# =============================================================================
# MEETINGS
# =============================================================================

@meetings_bp.get("/meetings")
@require_auth
@require_admin
def list_meetings_route():
    status = request.args.get("status")
    if status and status not in MEETING_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(MEETING_STATUSES)}"}), 400
    meetings = meeting_service.list_meetings(status=status)
    return jsonify({"meetings": [_meeting_payload(m) for m in meetings]})


@meetings_bp.post("/meetings")
@require_auth
@require_admin
def create_meeting_route():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required"}), 400

    try:
        meeting = meeting_service.create_meeting(
            name=name,
            description=data.get("description"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"meeting": _meeting_payload(meeting)}), 201
    except MeetingError as e:
        return jsonify({"error": str(e)}), 400


@meetings_bp.get("/meetings/<int:meeting_id>")
@require_auth
@require_admin
def get_meeting_route(meeting_id: int):
    try:
        meeting = meeting_service.get_meeting(meeting_id)
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    data = _meeting_payload(meeting)
    data["events"] = [event.to_dict() for event in meeting.events]
    return jsonify({"meeting": data})


@meetings_bp.patch("/meetings/<int:meeting_id>")
@require_auth
@require_admin
def update_meeting_route(meeting_id: int):
    data = request.get_json(silent=True) or {}
    try:
        meeting = meeting_service.update_meeting(
            meeting_id,
            name=data.get("name"),
            description=data.get("description"),
        )
        return jsonify({"meeting": _meeting_payload(meeting)})
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except MeetingError as e:
        return jsonify({"error": str(e)}), 400


@meetings_bp.delete("/meetings/<int:meeting_id>")
@require_auth
@require_admin
def delete_meeting_route(meeting_id: int):
    try:
        meeting_service.delete_meeting(meeting_id, actor_user_id=g.current_user.id)
        return jsonify({"message": "Meeting deleted"})
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404


@meetings_bp.post("/meetings/<int:meeting_id>/transition")
@require_auth
@require_admin
def transition_meeting_route(meeting_id: int):
    """
    Request body:
    - action: start | recess_start | recess_end | finish (required)
    - notes: str (optional)
    """
    data = request.get_json(silent=True) or {}
    action = data.get("action")
    if not action:
        return jsonify({"error": "action is required"}), 400

    try:
        meeting = meeting_service.transition_meeting(
            meeting_id,
            action,
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"meeting": _meeting_payload(meeting)})
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except MeetingError as e:
        return jsonify({"error": str(e)}), 400


# =============================================================================
# ATTENDANCE
# =============================================================================

@meetings_bp.get("/meetings/<int:meeting_id>/attendees")
@require_auth
@require_admin
def list_attendees_route(meeting_id: int):
    """Current attendees plus the per-user segment report."""
    try:
        present = attendance_service.get_current_attendees(meeting_id)
        report = attendance_service.get_attendance_report(meeting_id)
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({
        "present": [
            {"user_id": u.id, "name": u.display_name, "email": u.email}
            for u in present
        ],
        "present_count": len(present),
        "report": [
            {
                **row,
                "segments": [s.to_dict() for s in row["segments"]],
                "total_duration": attendance_service.format_duration(row["total_duration_minutes"]),
            }
            for row in report
        ],
    })


@meetings_bp.post("/meetings/<int:meeting_id>/attendees/check-in")
@require_auth
@require_admin
def manual_check_in_route(meeting_id: int):
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return jsonify({"error": "user_id must be an integer"}), 400

    try:
        event = attendance_service.manual_check_in(meeting_id, user_id, recorded_by_user_id=g.current_user.id)
        return jsonify({"event": event.to_dict()}), 201
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except AttendanceError as e:
        return jsonify({"error": str(e)}), 400


@meetings_bp.post("/meetings/<int:meeting_id>/attendees/check-out")
@require_auth
@require_admin
def manual_check_out_route(meeting_id: int):
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return jsonify({"error": "user_id must be an integer"}), 400

    try:
        event = attendance_service.manual_check_out(meeting_id, user_id, recorded_by_user_id=g.current_user.id)
        return jsonify({"event": event.to_dict()}), 201
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except AttendanceError as e:
        return jsonify({"error": str(e)}), 400


@meetings_bp.post("/meetings/<int:meeting_id>/check-out-all")
@require_auth
@require_admin
def check_out_all_route(meeting_id: int):
    try:
        count = attendance_service.check_out_all(meeting_id, recorded_by_user_id=g.current_user.id)
        return jsonify({"checked_out_count": count})
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to check out all attendees")
        return jsonify({"error": "Internal server error"}), 500


@meetings_bp.get("/meetings/<int:meeting_id>/attendees/export")
@require_auth
@require_admin
def export_attendance_route(meeting_id: int):
    try:
        filename, text = attendance_service.export_attendance_csv(meeting_id)
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@meetings_bp.post("/meetings/<int:meeting_id>/scan")
@require_auth
@require_admin
def scan_route(meeting_id: int):
    """
    Toggle presence from a scanned QR token.

    Request body:
    - qr_token: str (required)

    Unknown tokens and members without an active membership come back as
    {"success": false, "error": ...} with status 200; nothing is recorded.
    """
    data = request.get_json(silent=True) or {}
    qr_token = data.get("qr_token")
    if not isinstance(qr_token, str) or not qr_token.strip():
        return jsonify({"error": "qr_token is required"}), 400

    try:
        result = attendance_service.record_scan(meeting_id, qr_token, recorded_by_user_id=g.current_user.id)
        return jsonify(result.to_dict())
    except MeetingNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except AttendanceError as e:
        return jsonify({"error": str(e)}), 400


@meetings_bp.post("/verify-qr")
@require_auth
@require_admin
def verify_qr_route():
    """Look up a QR token's owner and their memberships without recording anything."""
    data = request.get_json(silent=True) or {}
    user = qr_token_service.verify_qr_token(data.get("qr_token"))
    if user is None:
        return jsonify({"valid": False, "error": "Invalid or expired QR code"}), 404

    now = utcnow()
    members = db.session.query(Member).filter_by(user_id=user.id, status="active").all()
    current = [m for m in members if m.membership and m.membership.start_time <= now < m.membership.end_time]
    return jsonify({
        "valid": True,
        "user": {"id": user.id, "name": user.display_name, "email": user.email},
        "active_memberships": [m.to_dict() for m in members],
        "has_current_membership": bool(current),
    })
