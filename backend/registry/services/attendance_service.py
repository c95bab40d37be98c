# Overview: Service-layer operations for meeting attendance; encapsulates business logic and database work.

"""
Attendance Event Projection

WHY: Attendance is an append-only log of check_in / check_out events. Who is
present and for how long is never stored; it is replayed from the log on
read. Every consumer (scan, manual actions, check-out-all, reports, CSV
export) goes through the projection functions below so they all agree.

WRITE-TIME TOGGLE:
    last event for (meeting, user) is check_in  -> new event is check_out
    otherwise (none, or check_out)               -> new event is check_in

READ-TIME PROJECTIONS (events replayed in ascending timestamp order, ties
keep input order):
- Current attendees: check_in adds to a set, check_out discards. Both are
  idempotent, so two concurrent check_ins still count the user once.
- Segments: check_in opens a segment; check_out closes the most recently
  opened still-open segment (duration in minutes, rounded half up); a
  check_out with nothing open is ignored; a trailing check_in stays open
  with duration None ("in progress").

The projection functions never raise on odd but well-formed sequences.
Gating (meeting status, active membership) happens before any write.
"""

from __future__ import annotations

import csv
import io
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Literal, Protocol

from flask import current_app

from ..extensions import db
from ..models import AttendanceEvent, Member, User
from .meeting_service import ATTENDANCE_OPEN_STATUSES, get_meeting
from .qr_token_service import verify_qr_token
from registry.time_utils import to_utc_z, utcnow


CHECK_IN = "check_in"
CHECK_OUT = "check_out"
AttendanceEventType = Literal["check_in", "check_out"]

SCAN_METHOD_QR = "qr_scan"
SCAN_METHOD_MANUAL = "manual"

CSV_COLUMNS = [
    "Name", "Email", "Segment #", "Check-In", "Check-Out",
    "Duration", "Total Duration", "Total Segments",
]


class AttendanceError(ValueError):
    """Raised when attendance cannot be recorded (meeting state, membership)."""
    pass


class _Event(Protocol):
    user_id: int
    event_type: str
    timestamp: datetime


@dataclass
class AttendanceSegment:
    user_id: int
    check_in_at: datetime
    check_out_at: datetime | None = None
    duration_minutes: int | None = None

    @property
    def is_open(self) -> bool:
        return self.check_out_at is None

    def to_dict(self) -> dict:
        return {
            "check_in_at": to_utc_z(self.check_in_at),
            "check_out_at": to_utc_z(self.check_out_at),
            "duration_minutes": self.duration_minutes,
        }


@dataclass
class ScanResult:
    success: bool
    event_type: str | None = None
    user: User | None = None
    error: str | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        data = {"success": self.success}
        if self.event_type:
            data["event_type"] = self.event_type
        if self.user is not None:
            data["user"] = {
                "id": self.user.id,
                "email": self.user.email,
                "name": self.user.display_name,
            }
        if self.error:
            data["error"] = self.error
            data["message"] = self.message
        return data


# -----------------------------------------------------------------------------
# Pure projection
# -----------------------------------------------------------------------------

def toggle_event_type(last_event: _Event | None) -> str:
    if last_event is not None and last_event.event_type == CHECK_IN:
        return CHECK_OUT
    return CHECK_IN


def _ordered(events: Iterable[_Event]) -> list[_Event]:
    # sorted() is stable: equal timestamps keep their input order
    return sorted(events, key=lambda e: e.timestamp)


def project_current_attendees(events: Iterable[_Event]) -> set[int]:
    present: set[int] = set()
    for event in _ordered(events):
        if event.event_type == CHECK_IN:
            present.add(event.user_id)
        elif event.event_type == CHECK_OUT:
            present.discard(event.user_id)
    return present


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, rounded half up."""
    return int(math.floor((end - start).total_seconds() / 60 + 0.5))


def project_segments(events: Iterable[_Event]) -> dict[int, list[AttendanceSegment]]:
    segments: dict[int, list[AttendanceSegment]] = {}
    open_stack: dict[int, list[AttendanceSegment]] = {}

    for event in _ordered(events):
        if event.event_type == CHECK_IN:
            segment = AttendanceSegment(user_id=event.user_id, check_in_at=event.timestamp)
            segments.setdefault(event.user_id, []).append(segment)
            open_stack.setdefault(event.user_id, []).append(segment)
        elif event.event_type == CHECK_OUT:
            stack = open_stack.get(event.user_id)
            if not stack:
                continue
            segment = stack.pop()
            segment.check_out_at = event.timestamp
            segment.duration_minutes = duration_minutes(segment.check_in_at, event.timestamp)

    return segments


def total_duration_minutes(segments: Iterable[AttendanceSegment]) -> int:
    return sum(s.duration_minutes for s in segments if s.duration_minutes is not None)


def format_duration(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------

def get_meeting_events(meeting_id: int) -> list[AttendanceEvent]:
    return db.session.query(AttendanceEvent).filter_by(meeting_id=meeting_id).order_by(
        AttendanceEvent.timestamp.asc(), AttendanceEvent.id.asc()
    ).all()


def get_last_event(meeting_id: int, user_id: int) -> AttendanceEvent | None:
    return db.session.query(AttendanceEvent).filter_by(
        meeting_id=meeting_id,
        user_id=user_id,
    ).order_by(AttendanceEvent.timestamp.desc(), AttendanceEvent.id.desc()).first()


def has_active_membership(user_id: int) -> bool:
    return db.session.query(Member.id).filter_by(user_id=user_id, status="active").first() is not None


def _require_open_meeting(meeting_id: int):
    meeting = get_meeting(meeting_id)
    if meeting.status not in ATTENDANCE_OPEN_STATUSES:
        raise AttendanceError(f"Cannot record attendance when meeting is {meeting.status}")
    return meeting


def _append_event(
    *,
    meeting_id: int,
    user_id: int,
    event_type: str,
    scan_method: str,
    recorded_by_user_id: int | None,
    timestamp: datetime | None = None,
) -> AttendanceEvent:
    event = AttendanceEvent(
        meeting_id=meeting_id,
        user_id=user_id,
        event_type=event_type,
        scan_method=scan_method,
        recorded_by_user_id=recorded_by_user_id,
        timestamp=timestamp or utcnow(),
    )
    db.session.add(event)
    return event


def record_scan(meeting_id: int, qr_token: str, *, recorded_by_user_id: int) -> ScanResult:
    """
    Toggle a member's presence from a scanned QR code.

    Invalid tokens and users without an active membership produce an
    unsuccessful ScanResult and write nothing; a meeting that is not ongoing
    or in recess raises AttendanceError.
    """
    _require_open_meeting(meeting_id)

    user = verify_qr_token(qr_token)
    if user is None:
        return ScanResult(success=False, error="invalid_token", message="Invalid or expired QR code")

    if not has_active_membership(user.id):
        return ScanResult(
            success=False,
            user=user,
            error="no_membership",
            message="User does not have an active membership",
        )

    event_type = toggle_event_type(get_last_event(meeting_id, user.id))
    _append_event(
        meeting_id=meeting_id,
        user_id=user.id,
        event_type=event_type,
        scan_method=SCAN_METHOD_QR,
        recorded_by_user_id=recorded_by_user_id,
    )
    db.session.commit()
    return ScanResult(success=True, event_type=event_type, user=user)


def manual_check_in(meeting_id: int, user_id: int, *, recorded_by_user_id: int) -> AttendanceEvent:
    _require_open_meeting(meeting_id)

    if db.session.get(User, user_id) is None:
        raise AttendanceError("User not found")
    if not has_active_membership(user_id):
        raise AttendanceError("User does not have an active membership")
    if toggle_event_type(get_last_event(meeting_id, user_id)) != CHECK_IN:
        raise AttendanceError("User is already checked in")

    event = _append_event(
        meeting_id=meeting_id,
        user_id=user_id,
        event_type=CHECK_IN,
        scan_method=SCAN_METHOD_MANUAL,
        recorded_by_user_id=recorded_by_user_id,
    )
    db.session.commit()
    return event


def manual_check_out(meeting_id: int, user_id: int, *, recorded_by_user_id: int) -> AttendanceEvent:
    _require_open_meeting(meeting_id)

    if toggle_event_type(get_last_event(meeting_id, user_id)) != CHECK_OUT:
        raise AttendanceError("User is not currently checked in")

    event = _append_event(
        meeting_id=meeting_id,
        user_id=user_id,
        event_type=CHECK_OUT,
        scan_method=SCAN_METHOD_MANUAL,
        recorded_by_user_id=recorded_by_user_id,
    )
    db.session.commit()
    return event


def check_out_all(meeting_id: int, *, recorded_by_user_id: int) -> int:
    """
    Check out everyone currently present at one shared timestamp.

    Returns the number of check_out events written; all of them commit in a
    single transaction.
    """
    get_meeting(meeting_id)
    present = project_current_attendees(get_meeting_events(meeting_id))
    if not present:
        return 0

    now = utcnow()
    for user_id in sorted(present):
        _append_event(
            meeting_id=meeting_id,
            user_id=user_id,
            event_type=CHECK_OUT,
            scan_method=SCAN_METHOD_MANUAL,
            recorded_by_user_id=recorded_by_user_id,
            timestamp=now,
        )

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Checked out %d attendees from meeting %s", len(present), meeting_id)
    return len(present)


def get_current_attendees(meeting_id: int) -> list[User]:
    get_meeting(meeting_id)
    present = project_current_attendees(get_meeting_events(meeting_id))
    if not present:
        return []
    users = db.session.query(User).filter(User.id.in_(present)).all()
    return sorted(users, key=lambda u: u.display_name.lower())


def get_attendance_report(meeting_id: int) -> list[dict]:
    """Per-user segments and totals, sorted by display name."""
    get_meeting(meeting_id)
    by_user = project_segments(get_meeting_events(meeting_id))
    if not by_user:
        return []

    users = {u.id: u for u in db.session.query(User).filter(User.id.in_(by_user.keys())).all()}
    report = []
    for user_id, segments in by_user.items():
        user = users.get(user_id)
        if user is None:
            continue
        report.append({
            "user_id": user_id,
            "name": user.display_name,
            "email": user.email,
            "segments": segments,
            "total_duration_minutes": total_duration_minutes(segments),
            "is_present": any(s.is_open for s in segments),
        })
    report.sort(key=lambda r: r["name"].lower())
    return report


def _csv_timestamp(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def export_attendance_csv(meeting_id: int, *, now: datetime | None = None) -> tuple[str, str]:
    """Returns (filename, csv text)."""
    meeting = get_meeting(meeting_id)
    now = now or utcnow()
    report = get_attendance_report(meeting_id)

    buf = io.StringIO()
    buf.write(f"Meeting: {meeting.name}\n")
    buf.write(f"Export Date: {_csv_timestamp(now)}\n")
    buf.write("\n")

    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in report:
        segments = row["segments"]
        total = format_duration(row["total_duration_minutes"])
        for index, segment in enumerate(segments):
            writer.writerow([
                row["name"],
                row["email"],
                index + 1,
                _csv_timestamp(segment.check_in_at),
                _csv_timestamp(segment.check_out_at) if segment.check_out_at else "In Progress",
                "In Progress" if segment.duration_minutes is None else format_duration(segment.duration_minutes),
                total if index == 0 else "",
                len(segments) if index == 0 else "",
            ])

    slug = re.sub(r"[^a-z0-9]", "-", meeting.name, flags=re.IGNORECASE).lower()
    filename = f"attendance-{slug}-{now.date().isoformat()}.csv"
    return filename, buf.getvalue()
