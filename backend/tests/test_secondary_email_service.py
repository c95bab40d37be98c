"""
Secondary email tests.

Verifies:
- Adding addresses without leaking other accounts
- Verification sets the student-domain expiry and voids competing claims
- Lookups ignore unverified claims
- Promotion to primary swaps addresses
"""

from datetime import datetime

import pytest

from registry.models import SecondaryEmail
from registry.services import secondary_email_service
from registry.services.secondary_email_service import (
    GENERIC_ADD_ERROR,
    SecondaryEmailError,
    calculate_expiry,
    is_secondary_email_valid,
)


class TestExpiry:

    def test_student_domain_expires_after_six_months(self, app):
        assert calculate_expiry("aalto.fi", datetime(2025, 1, 31)) == datetime(2025, 7, 31)

    def test_month_end_is_clamped(self, app):
        assert calculate_expiry("aalto.fi", datetime(2025, 8, 31)) == datetime(2026, 2, 28)

    def test_other_domains_never_expire(self, app):
        assert calculate_expiry("example.org", datetime(2025, 1, 1)) is None

    def test_validity(self):
        row = SecondaryEmail(verified_at=datetime(2025, 1, 1), expires_at=datetime(2025, 7, 1))
        assert is_secondary_email_valid(row, now=datetime(2025, 6, 30)) is True
        assert is_secondary_email_valid(row, now=datetime(2025, 7, 1)) is False
        assert is_secondary_email_valid(SecondaryEmail(verified_at=None), now=datetime(2025, 1, 1)) is False


class TestAddAndVerify:

    def test_add_is_unverified(self, db_session, member_user):
        row = secondary_email_service.create_secondary_email(member_user.id, " Student@Aalto.fi ")
        assert row.email == "student@aalto.fi"
        assert row.domain == "aalto.fi"
        assert row.verified_at is None

    def test_re_adding_returns_existing(self, db_session, member_user):
        first = secondary_email_service.create_secondary_email(member_user.id, "student@aalto.fi")
        second = secondary_email_service.create_secondary_email(member_user.id, "student@aalto.fi")
        assert first.id == second.id

    def test_other_users_primary_is_refused_generically(self, db_session, member_user, make_user):
        make_user("taken@example.org")
        with pytest.raises(SecondaryEmailError) as exc:
            secondary_email_service.create_secondary_email(member_user.id, "taken@example.org")
        assert str(exc.value) == GENERIC_ADD_ERROR

    def test_invalid_address(self, db_session, member_user):
        with pytest.raises(SecondaryEmailError):
            secondary_email_service.create_secondary_email(member_user.id, "not-an-email")

    def test_verify_voids_competing_claims(self, db_session, member_user, make_user):
        rival = make_user()
        rival_claim = secondary_email_service.create_secondary_email(rival.id, "student@aalto.fi")
        mine = secondary_email_service.create_secondary_email(member_user.id, "student@aalto.fi")

        verified = secondary_email_service.mark_verified(mine.id, member_user.id)

        assert verified.verified_at is not None
        assert verified.expires_at is not None
        assert db_session.get(SecondaryEmail, rival_claim.id) is None

    def test_verified_elsewhere_is_refused(self, db_session, member_user, make_user):
        owner = make_user()
        row = secondary_email_service.create_secondary_email(owner.id, "student@aalto.fi")
        secondary_email_service.mark_verified(row.id, owner.id)

        with pytest.raises(SecondaryEmailError):
            secondary_email_service.create_secondary_email(member_user.id, "student@aalto.fi")


class TestLookup:

    def test_unverified_claim_does_not_resolve(self, db_session, member_user):
        secondary_email_service.create_secondary_email(member_user.id, "student@aalto.fi")
        assert secondary_email_service.get_user_by_email("student@aalto.fi") is None

    def test_verified_claim_resolves(self, db_session, member_user):
        row = secondary_email_service.create_secondary_email(member_user.id, "student@aalto.fi")
        secondary_email_service.mark_verified(row.id, member_user.id)

        assert secondary_email_service.get_user_by_email("STUDENT@aalto.fi").id == member_user.id
        assert secondary_email_service.get_users_by_emails(["student@aalto.fi", "member@example.org"]) == {
            "student@aalto.fi": member_user,
            "member@example.org": member_user,
        }


class TestMakePrimary:

    def test_swap(self, db_session, member_user):
        row = secondary_email_service.create_secondary_email(member_user.id, "new@example.com")
        secondary_email_service.mark_verified(row.id, member_user.id)

        user = secondary_email_service.change_primary_email(row.id, member_user.id)

        assert user.email == "new@example.com"
        emails = [r.email for r in secondary_email_service.list_secondary_emails(member_user.id)]
        assert emails == ["member@example.org"]

    def test_unverified_cannot_become_primary(self, db_session, member_user):
        row = secondary_email_service.create_secondary_email(member_user.id, "new@example.com")
        with pytest.raises(SecondaryEmailError, match="verified"):
            secondary_email_service.change_primary_email(row.id, member_user.id)


class TestMeRoutes:

    def test_add_list_delete(self, client, member_headers):
        response = client.post('/api/me/secondary-emails', json={"email": "me@aalto.fi"}, headers=member_headers)
        assert response.status_code == 201
        email_id = response.get_json()["secondary_email"]["id"]

        listed = client.get('/api/me/secondary-emails', headers=member_headers).get_json()["secondary_emails"]
        assert listed[0]["is_valid"] is False

        response = client.delete(f'/api/me/secondary-emails/{email_id}', headers=member_headers)
        assert response.status_code == 200

        response = client.delete(f'/api/me/secondary-emails/{email_id}', headers=member_headers)
        assert response.status_code == 404

    def test_admin_verifies(self, client, admin_headers, member_user):
        row = secondary_email_service.create_secondary_email(member_user.id, "me@aalto.fi")
        response = client.post(
            f'/api/admin/users/{member_user.id}/secondary-emails/{row.id}/verify', headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["secondary_email"]["verified_at"] is not None
