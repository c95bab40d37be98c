# Overview: Service-layer operations for member imports; encapsulates business logic and database work.

"""
Member Import Service

Bulk-loads historical member lists (CSV / JSON / XLSX rows, parsed by the
route) into the registry.

ROW FORMAT (snake_case; the camelCase headers of older exports are accepted):
    first_names, last_name, home_municipality, email,
    membership_type_id, membership_start_date

RULES:
- The period is resolved by membership type + exact start date. Missing
  periods can be created up front with create_legacy_memberships.
- Users are matched by primary or verified secondary email; unknown emails
  create a user, known ones get their profile fields refreshed.
- A (user, period) pair that already has a member record is skipped, as are
  repeats of the same pair within one upload.
- Imported members start as active when the period has not ended yet,
  resigned otherwise.
- Row problems are collected per row ({row, email, error}); they never abort
  the rest of the import. Everything valid commits in one transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..extensions import db
from ..models import Member, Membership, MembershipType, User
from ..validation import ValidationError, normalize_email
from .audit_service import append_audit_log
from .membership_service import MembershipError, create_membership
from .secondary_email_service import get_users_by_emails
from registry.time_utils import parse_iso_datetime, utcnow


REQUIRED_FIELDS = (
    "first_names", "last_name", "home_municipality",
    "email", "membership_type_id", "membership_start_date",
)

FIELD_ALIASES = {
    "firstNames": "first_names",
    "lastName": "last_name",
    "homeMunicipality": "home_municipality",
    "membershipTypeId": "membership_type_id",
    "membershipStartDate": "membership_start_date",
}


class MemberImportError(ValueError):
    """Raised when an upload cannot be processed at all."""
    pass


@dataclass
class ImportResult:
    total_rows: int
    success_count: int = 0
    skipped_count: int = 0
    created_users: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_rows": self.total_rows,
            "success_count": self.success_count,
            "skipped_count": self.skipped_count,
            "created_users": self.created_users,
            "errors": self.errors,
        }


def normalize_row(raw: dict) -> dict:
    """Map header aliases to canonical names and stringify/strip values."""
    row = {}
    for key, value in (raw or {}).items():
        if key is None:
            continue
        key = str(key).strip()
        canonical = FIELD_ALIASES.get(key, key)
        if value is None:
            row[canonical] = ""
        elif isinstance(value, datetime):
            row[canonical] = value.date().isoformat()
        else:
            row[canonical] = str(value).strip()
    return row


def _parse_row(row: dict, types: set[int]) -> tuple[str, int, datetime]:
    missing = [f for f in REQUIRED_FIELDS if not row.get(f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    email = normalize_email(row["email"])

    try:
        type_id = int(row["membership_type_id"])
    except ValueError:
        raise ValidationError(f'Membership type ID "{row["membership_type_id"]}" not found')
    if type_id not in types:
        raise ValidationError(f'Membership type ID "{row["membership_type_id"]}" not found')

    try:
        start = parse_iso_datetime(row["membership_start_date"])
    except ValueError:
        start = None
    if start is None:
        raise ValidationError(f'Invalid membership start date "{row["membership_start_date"]}"')

    return email, type_id, start


def import_members(rows: list[dict], *, actor_user_id: int | None = None, now: datetime | None = None) -> ImportResult:
    if not isinstance(rows, list):
        raise MemberImportError("rows must be a list")

    now = now or utcnow()
    result = ImportResult(total_rows=len(rows))

    type_ids = {t.id for t in db.session.query(MembershipType.id).all()}
    periods: dict[tuple[int, datetime], Membership] = {
        (m.membership_type_id, m.start_time): m for m in db.session.query(Membership).all()
    }

    normalized = [normalize_row(r) if isinstance(r, dict) else {} for r in rows]
    users_by_email = get_users_by_emails(r.get("email", "") for r in normalized)

    seen_pairs: set[tuple[int, int]] = set()
    profiled: set[int] = set()

    for index, row in enumerate(normalized, start=1):
        email_for_report = row.get("email", "")
        try:
            email, type_id, start = _parse_row(row, type_ids)
        except ValidationError as e:
            result.errors.append({"row": index, "email": email_for_report, "error": str(e)})
            continue

        membership = periods.get((type_id, start))
        if membership is None:
            result.errors.append({
                "row": index,
                "email": email,
                "error": f'No membership found for type "{type_id}" starting on {row["membership_start_date"]}',
            })
            continue

        user = users_by_email.get(email)
        if user is None:
            user = User(
                email=email,
                first_names=row["first_names"],
                last_name=row["last_name"],
                home_municipality=row["home_municipality"],
                created_at=now,
            )
            db.session.add(user)
            db.session.flush()
            users_by_email[email] = user
            profiled.add(user.id)
            result.created_users += 1
        elif user.id not in profiled:
            user.first_names = row["first_names"]
            user.last_name = row["last_name"]
            user.home_municipality = row["home_municipality"]
            profiled.add(user.id)

        pair = (user.id, membership.id)
        if pair in seen_pairs:
            result.skipped_count += 1
            continue
        seen_pairs.add(pair)

        exists = db.session.query(Member.id).filter_by(user_id=user.id, membership_id=membership.id).first()
        if exists:
            result.skipped_count += 1
            continue

        db.session.add(Member(
            user_id=user.id,
            membership_id=membership.id,
            status="resigned" if membership.end_time < now else "active",
            description="Imported",
            created_at=now,
            updated_at=now,
        ))
        result.success_count += 1

    append_audit_log(
        action="member.import",
        actor_user_id=actor_user_id,
        target_type="member",
        metadata={
            "total_rows": result.total_rows,
            "success_count": result.success_count,
            "skipped_count": result.skipped_count,
            "error_count": len(result.errors),
        },
    )

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return result


def create_legacy_memberships(items: list[dict], *, actor_user_id: int | None = None) -> list[Membership]:
    """
    Create past periods referenced by an import, all or nothing.

    Each item: {membership_type_id, start_time, end_time}. A period with the
    same type and start already present is returned as is.
    """
    if not isinstance(items, list) or not items:
        raise MemberImportError("memberships must be a non-empty list")

    created: list[Membership] = []
    try:
        for position, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                raise MemberImportError(f"Item {position}: must be an object")
            try:
                type_id = int(item.get("membership_type_id"))
                start = parse_iso_datetime(item.get("start_time"))
                end = parse_iso_datetime(item.get("end_time"))
            except (TypeError, ValueError):
                raise MemberImportError(f"Item {position}: invalid membership_type_id or dates")
            if start is None or end is None:
                raise MemberImportError(f"Item {position}: start_time and end_time are required")

            existing = db.session.query(Membership).filter_by(
                membership_type_id=type_id, start_time=start
            ).first()
            if existing:
                created.append(existing)
                continue

            try:
                created.append(create_membership(
                    membership_type_id=type_id,
                    start_time=start,
                    end_time=end,
                    actor_user_id=actor_user_id,
                    commit=False,
                ))
            except (MembershipError, ValidationError) as e:
                raise MemberImportError(f"Item {position}: {e}") from e
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return created
