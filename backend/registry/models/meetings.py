from __future__ import annotations

from ..extensions import db
from registry.time_utils import to_utc_z


class Meeting(db.Model):
    """
    A meeting that members attend.

    LIFECYCLE: upcoming -> ongoing <-> recess -> finished
    Attendance can only be recorded while ongoing or in recess.
    """
    __tablename__ = "meetings"
    __table_args__ = (
        db.Index("ix_meetings_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="upcoming")

    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
            "created_at": to_utc_z(self.created_at),
        }


class MeetingEvent(db.Model):
    """
    Append-only record of meeting lifecycle changes (start, recess_start,
    recess_end, finish).
    """
    __tablename__ = "meeting_events"
    __table_args__ = (
        db.Index("ix_meeting_events_meeting_ts", "meeting_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(db.Integer, db.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False)

    meeting = db.relationship(
        "Meeting",
        backref=db.backref("events", lazy=True, cascade="all, delete-orphan", order_by="MeetingEvent.timestamp"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "meeting_id": self.meeting_id,
            "event_type": self.event_type,
            "notes": self.notes,
            "timestamp": to_utc_z(self.timestamp),
        }


class AttendanceEvent(db.Model):
    """
    Append-only check-in / check-out fact.

    IMMUTABLE: Never updated. Presence and durations are projected from the
    ordered event stream (attendance_service); rows disappear only when the
    meeting or the user is deleted.
    """
    __tablename__ = "attendance_events"
    __table_args__ = (
        db.Index("ix_attendance_events_meeting_user_ts", "meeting_id", "user_id", "timestamp"),
        db.Index("ix_attendance_events_meeting_ts", "meeting_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(db.Integer, db.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # check_in, check_out
    event_type = db.Column(db.String(16), nullable=False)
    # qr_scan, manual
    scan_method = db.Column(db.String(16), nullable=False)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False)

    meeting = db.relationship(
        "Meeting",
        backref=db.backref("attendance_events", lazy=True, cascade="all, delete-orphan"),
    )
    user = db.relationship(
        "User",
        foreign_keys=[user_id],
        backref=db.backref("attendance_events", lazy=True, cascade="all, delete-orphan"),
    )
    recorded_by = db.relationship("User", foreign_keys=[recorded_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "meeting_id": self.meeting_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "scan_method": self.scan_method,
            "recorded_by_user_id": self.recorded_by_user_id,
            "timestamp": to_utc_z(self.timestamp),
        }
