# Overview: Service-layer operations for meetings; encapsulates business logic and database work.

"""
Meeting Lifecycle Service

STATE MACHINE:
    upcoming -> ongoing -> recess -> ongoing -> ... -> finished

    start:        upcoming        -> ongoing   (sets started_at)
    recess_start: ongoing         -> recess
    recess_end:   recess          -> ongoing
    finish:       ongoing/recess  -> finished  (sets finished_at)

Every transition appends a MeetingEvent in the same transaction.
Attendance is recorded only while ongoing or in recess (attendance_service).
"""

from __future__ import annotations

from ..extensions import db
from ..models import Meeting, MeetingEvent
from .audit_service import append_audit_log
from registry.time_utils import utcnow


MEETING_STATUSES = ("upcoming", "ongoing", "recess", "finished")
ATTENDANCE_OPEN_STATUSES = ("ongoing", "recess")

# action -> (accepted source statuses, target status)
MEETING_ACTIONS: dict[str, tuple[tuple[str, ...], str]] = {
    "start": (("upcoming",), "ongoing"),
    "recess_start": (("ongoing",), "recess"),
    "recess_end": (("recess",), "ongoing"),
    "finish": (("ongoing", "recess"), "finished"),
}


class MeetingError(ValueError):
    """Raised for invalid meeting operations."""
    pass


class MeetingNotFoundError(MeetingError):
    pass


def get_meeting(meeting_id: int) -> Meeting:
    meeting = db.session.get(Meeting, meeting_id)
    if meeting is None:
        raise MeetingNotFoundError("Meeting not found")
    return meeting


def list_meetings(*, status: str | None = None) -> list[Meeting]:
    query = db.session.query(Meeting)
    if status:
        query = query.filter(Meeting.status == status)
    return query.order_by(Meeting.created_at.desc(), Meeting.id.desc()).all()


def create_meeting(*, name: str, description: str | None = None, actor_user_id: int | None = None) -> Meeting:
    name = (name or "").strip()
    if not name:
        raise MeetingError("name is required")

    meeting = Meeting(name=name, description=description, status="upcoming")
    db.session.add(meeting)
    db.session.flush()

    append_audit_log(
        action="meeting.create",
        actor_user_id=actor_user_id,
        target_type="meeting",
        target_id=meeting.id,
        metadata={"name": name},
    )
    db.session.commit()
    return meeting


def update_meeting(meeting_id: int, *, name: str | None = None, description: str | None = None) -> Meeting:
    meeting = get_meeting(meeting_id)
    if name is not None:
        if not name.strip():
            raise MeetingError("name cannot be empty")
        meeting.name = name.strip()
    if description is not None:
        meeting.description = description
    db.session.commit()
    return meeting


def available_actions(status: str) -> list[str]:
    return [action for action, (sources, _) in MEETING_ACTIONS.items() if status in sources]


def transition_meeting(
    meeting_id: int,
    action: str,
    *,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Meeting:
    if action not in MEETING_ACTIONS:
        raise MeetingError(f"Unknown meeting action '{action}'")

    meeting = get_meeting(meeting_id)
    sources, target = MEETING_ACTIONS[action]
    if meeting.status not in sources:
        raise MeetingError(f"Cannot {action} a meeting that is {meeting.status}")

    now = utcnow()
    from_status = meeting.status
    meeting.status = target
    if action == "start":
        meeting.started_at = now
    elif action == "finish":
        meeting.finished_at = now

    db.session.add(MeetingEvent(
        meeting_id=meeting.id,
        event_type=action,
        notes=notes,
        timestamp=now,
    ))

    append_audit_log(
        action=f"meeting.{action}",
        actor_user_id=actor_user_id,
        target_type="meeting",
        target_id=meeting.id,
        metadata={"from_status": from_status, "to_status": target},
    )
    db.session.commit()
    return meeting


def delete_meeting(meeting_id: int, *, actor_user_id: int | None = None) -> None:
    """Delete a meeting; its lifecycle and attendance events go with it."""
    meeting = get_meeting(meeting_id)
    append_audit_log(
        action="meeting.delete",
        actor_user_id=actor_user_id,
        target_type="meeting",
        target_id=meeting.id,
        metadata={"name": meeting.name},
    )
    db.session.delete(meeting)
    db.session.commit()
