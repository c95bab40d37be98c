"""
Attendance service tests (database-backed).

Verifies:
- Recording is gated on meeting status and active membership
- QR scans toggle presence and never write on failure
- Manual check-in / check-out guards
- Check-out-all closes exactly the present users at one shared timestamp
- Report and CSV export agree with the projection
"""

from datetime import datetime

import pytest

from registry.models import AttendanceEvent
from registry.services import attendance_service, meeting_service, qr_token_service
from registry.services.attendance_service import AttendanceError, CHECK_IN, CHECK_OUT, SCAN_METHOD_QR


@pytest.fixture
def period(make_membership):
    return make_membership(datetime(2024, 1, 1), datetime(2099, 1, 1))


@pytest.fixture
def meeting(db_session, admin_user):
    row = meeting_service.create_meeting(name="General Meeting", actor_user_id=admin_user.id)
    meeting_service.transition_meeting(row.id, "start", actor_user_id=admin_user.id)
    return row


@pytest.fixture
def make_active_member(make_user, make_member, period):
    def _make(email=None, **kwargs):
        user = make_user(email, **kwargs)
        make_member(user, period, "active")
        return user
    return _make


def add_event(db_session, meeting, user, event_type, ts):
    db_session.add(AttendanceEvent(
        meeting_id=meeting.id,
        user_id=user.id,
        event_type=event_type,
        scan_method="manual",
        timestamp=ts,
    ))
    db_session.commit()


# =============================================================================
# GATING
# =============================================================================


class TestGating:

    def test_upcoming_meeting_refuses_attendance(self, db_session, admin_user, make_active_member):
        upcoming = meeting_service.create_meeting(name="Later")
        user = make_active_member()

        with pytest.raises(AttendanceError, match="upcoming"):
            attendance_service.manual_check_in(upcoming.id, user.id, recorded_by_user_id=admin_user.id)

    def test_finished_meeting_refuses_scan(self, db_session, admin_user, meeting, make_active_member):
        user = make_active_member()
        token = qr_token_service.ensure_user_has_qr_token(user.id)
        meeting_service.transition_meeting(meeting.id, "finish")

        with pytest.raises(AttendanceError, match="finished"):
            attendance_service.record_scan(meeting.id, token, recorded_by_user_id=admin_user.id)
        assert db_session.query(AttendanceEvent).count() == 0

    def test_recess_accepts_attendance(self, db_session, admin_user, meeting, make_active_member):
        user = make_active_member()
        meeting_service.transition_meeting(meeting.id, "recess_start")

        event = attendance_service.manual_check_in(meeting.id, user.id, recorded_by_user_id=admin_user.id)
        assert event.event_type == CHECK_IN

    def test_user_without_active_membership(self, db_session, admin_user, meeting, make_user):
        user = make_user()
        with pytest.raises(AttendanceError, match="active membership"):
            attendance_service.manual_check_in(meeting.id, user.id, recorded_by_user_id=admin_user.id)


# =============================================================================
# SCANS
# =============================================================================


class TestScan:

    def test_scan_toggles(self, db_session, admin_user, meeting, make_active_member):
        user = make_active_member()
        token = qr_token_service.ensure_user_has_qr_token(user.id)

        first = attendance_service.record_scan(meeting.id, token, recorded_by_user_id=admin_user.id)
        second = attendance_service.record_scan(meeting.id, token, recorded_by_user_id=admin_user.id)

        assert first.success and first.event_type == CHECK_IN
        assert second.success and second.event_type == CHECK_OUT
        events = db_session.query(AttendanceEvent).order_by(AttendanceEvent.id).all()
        assert [e.event_type for e in events] == [CHECK_IN, CHECK_OUT]
        assert all(e.scan_method == SCAN_METHOD_QR for e in events)
        assert all(e.recorded_by_user_id == admin_user.id for e in events)

    def test_invalid_token_writes_nothing(self, db_session, admin_user, meeting):
        result = attendance_service.record_scan(meeting.id, "not-a-token", recorded_by_user_id=admin_user.id)

        assert not result.success
        assert result.error == "invalid_token"
        assert db_session.query(AttendanceEvent).count() == 0

    def test_no_membership_writes_nothing(self, db_session, admin_user, meeting, make_user):
        user = make_user()
        token = qr_token_service.ensure_user_has_qr_token(user.id)

        result = attendance_service.record_scan(meeting.id, token, recorded_by_user_id=admin_user.id)

        assert not result.success
        assert result.error == "no_membership"
        assert result.to_dict()["user"]["id"] == user.id
        assert db_session.query(AttendanceEvent).count() == 0

    def test_qr_token_is_stable_until_regenerated(self, db_session, make_user):
        user = make_user()
        token = qr_token_service.ensure_user_has_qr_token(user.id)
        assert qr_token_service.ensure_user_has_qr_token(user.id) == token

        new_token = qr_token_service.regenerate_qr_token(user.id)
        assert new_token != token
        assert qr_token_service.verify_qr_token(token) is None
        assert qr_token_service.verify_qr_token(new_token).id == user.id


# =============================================================================
# MANUAL ACTIONS
# =============================================================================


class TestManual:

    def test_double_manual_check_in_refused(self, db_session, admin_user, meeting, make_active_member):
        user = make_active_member()
        attendance_service.manual_check_in(meeting.id, user.id, recorded_by_user_id=admin_user.id)

        with pytest.raises(AttendanceError, match="already checked in"):
            attendance_service.manual_check_in(meeting.id, user.id, recorded_by_user_id=admin_user.id)

    def test_check_out_without_check_in_refused(self, db_session, admin_user, meeting, make_active_member):
        user = make_active_member()
        with pytest.raises(AttendanceError, match="not currently checked in"):
            attendance_service.manual_check_out(meeting.id, user.id, recorded_by_user_id=admin_user.id)

    def test_unknown_user(self, db_session, admin_user, meeting):
        with pytest.raises(AttendanceError, match="User not found"):
            attendance_service.manual_check_in(meeting.id, 9999, recorded_by_user_id=admin_user.id)


# =============================================================================
# CHECK-OUT-ALL
# =============================================================================


class TestCheckOutAll:

    def test_three_in_two_out(self, db_session, admin_user, meeting, make_active_member):
        users = [make_active_member() for _ in range(5)]
        for user in users:
            attendance_service.manual_check_in(meeting.id, user.id, recorded_by_user_id=admin_user.id)
        for user in users[:2]:
            attendance_service.manual_check_out(meeting.id, user.id, recorded_by_user_id=admin_user.id)

        count = attendance_service.check_out_all(meeting.id, recorded_by_user_id=admin_user.id)

        assert count == 3
        assert attendance_service.get_current_attendees(meeting.id) == []
        bulk = db_session.query(AttendanceEvent).filter_by(event_type=CHECK_OUT).order_by(
            AttendanceEvent.id.desc()
        ).limit(3).all()
        assert {e.user_id for e in bulk} == {u.id for u in users[2:]}
        assert len({e.timestamp for e in bulk}) == 1

    def test_nobody_present(self, db_session, admin_user, meeting):
        assert attendance_service.check_out_all(meeting.id, recorded_by_user_id=admin_user.id) == 0

    def test_concurrent_double_check_in_checks_out_once(self, db_session, admin_user, meeting, make_active_member):
        user = make_active_member()
        # Two racing scans both saw "no previous event" and wrote check_in
        add_event(db_session, meeting, user, CHECK_IN, datetime(2025, 3, 1, 18, 0))
        add_event(db_session, meeting, user, CHECK_IN, datetime(2025, 3, 1, 18, 0))

        assert [u.id for u in attendance_service.get_current_attendees(meeting.id)] == [user.id]
        assert attendance_service.check_out_all(meeting.id, recorded_by_user_id=admin_user.id) == 1
        assert attendance_service.get_current_attendees(meeting.id) == []

    def test_works_after_meeting_finished(self, db_session, admin_user, meeting, make_active_member):
        user = make_active_member()
        attendance_service.manual_check_in(meeting.id, user.id, recorded_by_user_id=admin_user.id)
        meeting_service.transition_meeting(meeting.id, "finish")

        assert attendance_service.check_out_all(meeting.id, recorded_by_user_id=admin_user.id) == 1


# =============================================================================
# REPORT & EXPORT
# =============================================================================


class TestReport:

    def test_report_segments_and_totals(self, db_session, meeting, make_active_member):
        anna = make_active_member(first_names="Anna", last_name="Aalto")
        bert = make_active_member(first_names="Bert", last_name="Berg")
        add_event(db_session, meeting, bert, CHECK_IN, datetime(2025, 3, 1, 18, 0))
        add_event(db_session, meeting, anna, CHECK_IN, datetime(2025, 3, 1, 18, 0))
        add_event(db_session, meeting, anna, CHECK_OUT, datetime(2025, 3, 1, 19, 0))

        report = attendance_service.get_attendance_report(meeting.id)

        assert [r["name"] for r in report] == ["Anna Aalto", "Bert Berg"]
        assert report[0]["total_duration_minutes"] == 60
        assert report[0]["is_present"] is False
        assert report[1]["is_present"] is True
        assert report[1]["segments"][0].duration_minutes is None

    def test_csv_export(self, db_session, meeting, make_active_member):
        anna = make_active_member("anna@example.org", first_names="Anna", last_name="Aalto")
        add_event(db_session, meeting, anna, CHECK_IN, datetime(2025, 3, 1, 18, 0))
        add_event(db_session, meeting, anna, CHECK_OUT, datetime(2025, 3, 1, 19, 30))
        add_event(db_session, meeting, anna, CHECK_IN, datetime(2025, 3, 1, 20, 0))

        filename, text = attendance_service.export_attendance_csv(meeting.id, now=datetime(2025, 3, 2, 8, 0))

        assert filename == "attendance-general-meeting-2025-03-02.csv"
        lines = text.splitlines()
        assert lines[0] == "Meeting: General Meeting"
        assert lines[1] == "Export Date: 2025-03-02T08:00:00.000Z"
        assert lines[2] == ""
        assert lines[3] == "Name,Email,Segment #,Check-In,Check-Out,Duration,Total Duration,Total Segments"
        assert lines[4] == (
            "Anna Aalto,anna@example.org,1,2025-03-01T18:00:00.000Z,2025-03-01T19:30:00.000Z,1h 30m,1h 30m,2"
        )
        assert lines[5] == "Anna Aalto,anna@example.org,2,2025-03-01T20:00:00.000Z,In Progress,In Progress,,"
