"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Regular members are denied board operations (403)
- Board members (admins) can perform privileged operations
- Session lifecycle: expiry, idle timeout, logout
- Health and version endpoints are public
"""

from datetime import timedelta

import pytest

from registry.models import SessionToken
from registry.services import session_service
from registry.time_utils import utcnow


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/me"),
            ("GET", "/api/me/memberships"),
            ("GET", "/api/me/qr-token"),
            ("GET", "/api/auth/session"),
            ("POST", "/api/auth/logout"),
            ("POST", "/api/purchases"),
            ("GET", "/api/admin/members"),
            ("POST", "/api/admin/members/bulk"),
            ("GET", "/api/admin/users"),
            ("GET", "/api/admin/membership-types"),
            ("GET", "/api/admin/memberships"),
            ("GET", "/api/admin/meetings"),
            ("POST", "/api/admin/imports/members"),
            ("GET", "/api/admin/audit-logs"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/me", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"


# =============================================================================
# MEMBERS DENIED BOARD OPERATIONS (403)
# =============================================================================


class TestMemberDeniedBoardOperations:
    """A regular member cannot reach /api/admin."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/admin/members"),
            ("POST", "/api/admin/members/1/approve"),
            ("GET", "/api/admin/users"),
            ("POST", "/api/admin/users/merge"),
            ("POST", "/api/admin/membership-types"),
            ("POST", "/api/admin/meetings"),
            ("POST", "/api/admin/meetings/1/scan"),
            ("GET", "/api/admin/audit-logs"),
        ],
    )
    def test_forbidden(self, client, member_headers, method, path):
        resp = getattr(client, method.lower())(path, headers=member_headers)
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json()["error"] == "Admin access required"

    def test_member_can_read_own_profile(self, client, member_headers):
        resp = client.get("/api/me", headers=member_headers)
        assert resp.status_code == 200
        assert resp.get_json()["user"]["email"] == "member@example.org"


# =============================================================================
# ADMIN ACCESS
# =============================================================================


class TestAdminAccess:

    def test_can_list_members(self, client, admin_headers):
        resp = client.get("/api/admin/members", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_users(self, client, admin_headers):
        resp = client.get("/api/admin/users", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_meetings(self, client, admin_headers):
        resp = client.get("/api/admin/meetings", headers=admin_headers)
        assert resp.status_code == 200


# =============================================================================
# SESSIONS
# =============================================================================


class TestSessions:

    def test_logout_revokes_token(self, client, member_user):
        _, token = session_service.create_session(member_user.id)
        headers = auth_headers(token)

        assert client.get("/api/auth/session", headers=headers).status_code == 200
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/session", headers=headers).status_code == 401

    def test_expired_session(self, db_session, member_user):
        session, token = session_service.create_session(member_user.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_idle_session_is_revoked(self, db_session, member_user):
        session, token = session_service.create_session(member_user.id)
        session.last_used_at = utcnow() - timedelta(days=30)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.expire_all()
        assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_only_hash_is_stored(self, db_session, member_user):
        session, token = session_service.create_session(member_user.id)
        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token


# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================


class TestPublicEndpoints:
    """System health and version endpoints are public."""

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_version(self, client, db_session):
        resp = client.get("/api/version")
        assert resp.status_code == 200
