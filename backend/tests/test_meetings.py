"""
Meeting lifecycle and attendance route tests.

Verifies:
- upcoming -> ongoing -> recess -> ongoing -> finished, with lifecycle events
- Illegal lifecycle actions are refused without side effects
- Attendance endpoints: scan, manual check-in/out, check-out-all, CSV export
"""

from datetime import datetime

import pytest

from registry.models import AttendanceEvent, AuditLog, MeetingEvent
from registry.services import meeting_service, qr_token_service
from registry.services.meeting_service import MeetingError, MeetingNotFoundError


# =============================================================================
# LIFECYCLE (service)
# =============================================================================


class TestLifecycle:

    def test_full_cycle(self, db_session, admin_user):
        meeting = meeting_service.create_meeting(name="Spring Meeting", actor_user_id=admin_user.id)
        assert meeting.status == "upcoming"
        assert meeting_service.available_actions("upcoming") == ["start"]

        for action, expected in [
            ("start", "ongoing"),
            ("recess_start", "recess"),
            ("recess_end", "ongoing"),
            ("finish", "finished"),
        ]:
            meeting = meeting_service.transition_meeting(meeting.id, action, actor_user_id=admin_user.id)
            assert meeting.status == expected

        assert meeting.started_at is not None
        assert meeting.finished_at is not None
        events = db_session.query(MeetingEvent).filter_by(meeting_id=meeting.id).order_by(MeetingEvent.id).all()
        assert [e.event_type for e in events] == ["start", "recess_start", "recess_end", "finish"]
        assert db_session.query(AuditLog).filter_by(action="meeting.finish").count() == 1

    def test_finish_from_recess(self, db_session):
        meeting = meeting_service.create_meeting(name="Board")
        meeting_service.transition_meeting(meeting.id, "start")
        meeting_service.transition_meeting(meeting.id, "recess_start")
        assert meeting_service.transition_meeting(meeting.id, "finish").status == "finished"

    @pytest.mark.parametrize("action", ["recess_start", "recess_end", "finish"])
    def test_upcoming_only_starts(self, db_session, action):
        meeting = meeting_service.create_meeting(name="Board")
        with pytest.raises(MeetingError, match="upcoming"):
            meeting_service.transition_meeting(meeting.id, action)

        db_session.expire_all()
        assert meeting_service.get_meeting(meeting.id).status == "upcoming"
        assert db_session.query(MeetingEvent).count() == 0

    def test_finished_is_terminal(self, db_session):
        meeting = meeting_service.create_meeting(name="Board")
        meeting_service.transition_meeting(meeting.id, "start")
        meeting_service.transition_meeting(meeting.id, "finish")
        assert meeting_service.available_actions("finished") == []
        with pytest.raises(MeetingError):
            meeting_service.transition_meeting(meeting.id, "start")

    def test_unknown_action(self, db_session):
        meeting = meeting_service.create_meeting(name="Board")
        with pytest.raises(MeetingError, match="Unknown"):
            meeting_service.transition_meeting(meeting.id, "adjourn")

    def test_blank_name_refused(self, db_session):
        with pytest.raises(MeetingError):
            meeting_service.create_meeting(name="   ")

    def test_missing_meeting(self, db_session):
        with pytest.raises(MeetingNotFoundError):
            meeting_service.get_meeting(12345)


# =============================================================================
# ROUTES
# =============================================================================


@pytest.fixture
def ongoing(db_session, admin_user):
    meeting = meeting_service.create_meeting(name="Annual Meeting", actor_user_id=admin_user.id)
    meeting_service.transition_meeting(meeting.id, "start")
    return meeting


@pytest.fixture
def active_user(make_user, make_member, make_membership):
    period = make_membership(datetime(2024, 1, 1), datetime(2099, 1, 1))
    user = make_user("voter@example.org", first_names="Vera", last_name="Voter")
    make_member(user, period, "active")
    return user


class TestMeetingRoutes:

    def test_create_and_transition(self, client, admin_headers):
        response = client.post('/api/admin/meetings', json={"name": "Autumn Meeting"}, headers=admin_headers)
        assert response.status_code == 201
        meeting = response.get_json()["meeting"]
        assert meeting["status"] == "upcoming"
        assert meeting["available_actions"] == ["start"]

        response = client.post(
            f'/api/admin/meetings/{meeting["id"]}/transition',
            json={"action": "start"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["meeting"]["status"] == "ongoing"

        response = client.get(f'/api/admin/meetings/{meeting["id"]}', headers=admin_headers)
        assert [e["event_type"] for e in response.get_json()["meeting"]["events"]] == ["start"]

    def test_create_requires_name(self, client, admin_headers):
        response = client.post('/api/admin/meetings', json={}, headers=admin_headers)
        assert response.status_code == 400

    def test_illegal_transition_is_400(self, client, admin_headers, ongoing):
        response = client.post(
            f'/api/admin/meetings/{ongoing.id}/transition',
            json={"action": "start"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_unknown_meeting_is_404(self, client, admin_headers):
        response = client.post(
            '/api/admin/meetings/999/transition', json={"action": "start"}, headers=admin_headers,
        )
        assert response.status_code == 404

    def test_list_filters_by_status(self, client, admin_headers, ongoing):
        meeting_service.create_meeting(name="Later")
        response = client.get('/api/admin/meetings?status=ongoing', headers=admin_headers)
        names = [m["name"] for m in response.get_json()["meetings"]]
        assert names == ["Annual Meeting"]

    def test_members_cannot_manage_meetings(self, client, member_headers):
        response = client.get('/api/admin/meetings', headers=member_headers)
        assert response.status_code == 403


class TestAttendanceRoutes:

    def test_scan_toggles(self, client, admin_headers, ongoing, active_user):
        token = qr_token_service.ensure_user_has_qr_token(active_user.id)

        first = client.post(f'/api/admin/meetings/{ongoing.id}/scan', json={"qr_token": token}, headers=admin_headers)
        second = client.post(f'/api/admin/meetings/{ongoing.id}/scan', json={"qr_token": token}, headers=admin_headers)

        assert first.get_json()["event_type"] == "check_in"
        assert first.get_json()["user"]["name"] == "Vera Voter"
        assert second.get_json()["event_type"] == "check_out"

    def test_scan_unknown_token_is_unsuccessful(self, client, admin_headers, ongoing, db_session):
        response = client.post(
            f'/api/admin/meetings/{ongoing.id}/scan', json={"qr_token": "nope"}, headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.get_json() == {
            "success": False,
            "error": "invalid_token",
            "message": "Invalid or expired QR code",
        }
        assert db_session.query(AttendanceEvent).count() == 0

    def test_scan_requires_token(self, client, admin_headers, ongoing):
        response = client.post(f'/api/admin/meetings/{ongoing.id}/scan', json={}, headers=admin_headers)
        assert response.status_code == 400

    def test_scan_on_upcoming_meeting_is_400(self, client, admin_headers, active_user):
        meeting = meeting_service.create_meeting(name="Later")
        token = qr_token_service.ensure_user_has_qr_token(active_user.id)
        response = client.post(f'/api/admin/meetings/{meeting.id}/scan', json={"qr_token": token}, headers=admin_headers)
        assert response.status_code == 400
        assert "upcoming" in response.get_json()["error"]

    def test_manual_check_in_and_attendees(self, client, admin_headers, ongoing, active_user):
        response = client.post(
            f'/api/admin/meetings/{ongoing.id}/attendees/check-in',
            json={"user_id": active_user.id},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.get_json()["event"]["scan_method"] == "manual"

        response = client.get(f'/api/admin/meetings/{ongoing.id}/attendees', headers=admin_headers)
        data = response.get_json()
        assert data["present_count"] == 1
        assert data["present"][0]["email"] == "voter@example.org"
        assert data["report"][0]["is_present"] is True

        again = client.post(
            f'/api/admin/meetings/{ongoing.id}/attendees/check-in',
            json={"user_id": active_user.id},
            headers=admin_headers,
        )
        assert again.status_code == 400

    def test_manual_check_in_validates_user_id(self, client, admin_headers, ongoing):
        response = client.post(
            f'/api/admin/meetings/{ongoing.id}/attendees/check-in',
            json={"user_id": "7"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_check_out_all(self, client, admin_headers, ongoing, active_user):
        client.post(
            f'/api/admin/meetings/{ongoing.id}/attendees/check-in',
            json={"user_id": active_user.id},
            headers=admin_headers,
        )
        response = client.post(f'/api/admin/meetings/{ongoing.id}/check-out-all', headers=admin_headers)
        assert response.get_json() == {"checked_out_count": 1}

        response = client.post(f'/api/admin/meetings/{ongoing.id}/check-out-all', headers=admin_headers)
        assert response.get_json() == {"checked_out_count": 0}

    def test_export_is_csv(self, client, admin_headers, ongoing):
        response = client.get(f'/api/admin/meetings/{ongoing.id}/attendees/export', headers=admin_headers)
        assert response.status_code == 200
        assert response.mimetype == "text/csv"
        assert 'filename="attendance-annual-meeting-' in response.headers["Content-Disposition"]
        assert response.get_data(as_text=True).startswith("Meeting: Annual Meeting\n")

    def test_verify_qr(self, client, admin_headers, active_user):
        token = qr_token_service.ensure_user_has_qr_token(active_user.id)
        response = client.post('/api/admin/verify-qr', json={"qr_token": token}, headers=admin_headers)
        data = response.get_json()
        assert data["valid"] is True
        assert data["has_current_membership"] is True

        response = client.post('/api/admin/verify-qr', json={"qr_token": "bad"}, headers=admin_headers)
        assert response.status_code == 404
