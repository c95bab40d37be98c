# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/registry/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
# - Apply the schema first: python -m flask db upgrade
#
# System bootstrap/repair:
# - python -m flask system init --admin-email board@example.org
#   Idempotent bootstrap: first board (admin) user and a default membership type.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--admins-only]
#   List users with admin flag and last activity.
# - python -m flask users create --email jane@example.org --first-names Jane --last-name Doe [--admin]
#   Create a user.
# - python -m flask users make-admin jane@example.org [--revoke]
#   Promote (or demote) a board member.
# - python -m flask users issue-token jane@example.org
#   Create a session and print its bearer token (for scripts and first sign-in).
#
# Membership catalog:
# - python -m flask memberships create-type --name-fi "Varsinainen jäsen" --name-en "Regular member"
#   Create a membership type.
# - python -m flask memberships create-period --type-id 1 --start 2025-08-01 --end 2026-07-31 --price-ref price_123 [--student]
#   Create a purchasable period.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --older-than-days 30
#   Delete expired and revoked sessions.
# - python -m flask maintenance cleanup-audit-logs
#   Delete audit entries past their retention window (by action prefix).
# - python -m flask maintenance cleanup-inactive-users --retention-years 7 --yes
#   Delete non-admin users with no activity for the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import MembershipType, User
from .services import maintenance_service, membership_service, session_service, user_service
from .services.membership_service import MembershipError
from .services.user_service import UserError
from .validation import ConflictError, ValidationError
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', prompt=True, help='Email of the first board member')
@with_appcontext
def init_system(admin_email):
    """
    Initialize the registry: a board (admin) user and a default membership type.

    Safe to re-run; existing rows are kept.
    """
    click.echo("START Initializing registry...")

    existing = db.session.query(User).filter_by(email=admin_email.strip().lower()).first()
    if existing:
        if not existing.is_admin:
            existing.is_admin = True
            db.session.commit()
            click.echo(f"PASS Promoted existing user to admin: {existing.email} (ID: {existing.id})")
        else:
            click.echo(f"PASS Using existing admin: {existing.email} (ID: {existing.id})")
    else:
        try:
            user = user_service.create_user(email=admin_email, is_admin=True)
        except (ValidationError, ConflictError) as e:
            click.echo(f"FAIL Could not create admin: {e}")
            return
        click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")

    membership_type = db.session.query(MembershipType).first()
    if not membership_type:
        membership_type = membership_service.create_membership_type(
            name={"fi": "Varsinainen jäsen", "en": "Regular member"},
        )
        click.echo(f"PASS Created default membership type (ID: {membership_type.id})")
    else:
        click.echo(f"PASS Using existing membership type (ID: {membership_type.id})")

    click.echo("\n" + "=" * 60)
    click.echo("DONE Registry initialized")
    click.echo("=" * 60)
    click.echo(f"\nNext: python -m flask users issue-token {admin_email.strip().lower()}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--admins-only', is_flag=True, help='Only board members')
@with_appcontext
def list_users(admins_only):
    """List users."""
    users = user_service.list_users(admins_only=admins_only, limit=10000)
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<6} {'Email':<40} {'Name':<30} {'Admin':<6} {'Last active'}")
    click.echo("=" * 100)
    for user in users:
        name = " ".join(p for p in (user.first_names, user.last_name) if p) or "-"
        last_active = user.last_active_at.strftime("%Y-%m-%d") if user.last_active_at else "never"
        click.echo(f"{user.id:<6} {user.email:<40} {name[:30]:<30} {'Yes' if user.is_admin else 'No':<6} {last_active}")
    click.echo(f"\nTotal: {len(users)}")


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--first-names', default=None, help='First names')
@click.option('--last-name', default=None, help='Last name')
@click.option('--municipality', default=None, help='Home municipality')
@click.option('--admin', 'is_admin', is_flag=True, help='Create as board member')
@with_appcontext
def create_user_cli(email, first_names, last_name, municipality, is_admin):
    """Create a new user."""
    try:
        user = user_service.create_user(
            email=email,
            first_names=first_names,
            last_name=last_name,
            home_municipality=municipality,
            is_admin=is_admin,
        )
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create user: {e}")
        return
    click.echo(f"PASS Created user: {user.email} (ID: {user.id}){' as admin' if is_admin else ''}")


@users_group.command('make-admin')
@click.argument('email')
@click.option('--revoke', is_flag=True, help='Demote instead of promote')
@with_appcontext
def make_admin_cli(email, revoke):
    """Promote a user to board member (or demote with --revoke)."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        return
    try:
        user_service.set_admin(user.id, not revoke)
    except UserError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS {'Demoted' if revoke else 'Promoted'} {user.email}")


@users_group.command('issue-token')
@click.argument('email')
@with_appcontext
def issue_token_cli(email):
    """Create a session for a user and print the bearer token."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        return
    session, token = session_service.create_session(user.id, user_agent="flask-cli")
    click.echo(f"PASS Session {session.id} for {user.email}, expires {session.expires_at:%Y-%m-%d %H:%M} UTC")
    click.echo(token)


# =============================================================================
# MEMBERSHIP CATALOG COMMANDS
# =============================================================================

@click.group('memberships')
def memberships_group():
    """Membership catalog commands."""


@memberships_group.command('create-type')
@click.option('--name-fi', required=True, help='Finnish name')
@click.option('--name-en', default=None, help='English name')
@with_appcontext
def create_type_cli(name_fi, name_en):
    """Create a membership type."""
    name = {"fi": name_fi}
    if name_en:
        name["en"] = name_en
    row = membership_service.create_membership_type(name=name)
    click.echo(f"PASS Created membership type {row.id}: {row.localized_name('fi')}")


@memberships_group.command('create-period')
@click.option('--type-id', type=int, required=True, help='Membership type ID')
@click.option('--start', required=True, help='Start (ISO-8601, e.g. 2025-08-01)')
@click.option('--end', required=True, help='End (ISO-8601)')
@click.option('--price-ref', default=None, help='Payment provider price reference')
@click.option('--student', is_flag=True, help='Requires student verification')
@with_appcontext
def create_period_cli(type_id, start, end, price_ref, student):
    """Create a membership period."""
    try:
        start_time = parse_iso_datetime(start)
        end_time = parse_iso_datetime(end)
    except ValueError:
        click.echo("FAIL --start and --end must be ISO-8601 dates")
        return

    try:
        row = membership_service.create_membership(
            membership_type_id=type_id,
            start_time=start_time,
            end_time=end_time,
            price_reference=price_ref,
            requires_student_verification=student,
        )
    except (MembershipError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created membership {row.id}: {row.start_time:%Y-%m-%d} - {row.end_time:%Y-%m-%d}")


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(older_than_days):
    """Delete expired and revoked sessions."""
    deleted = maintenance_service.cleanup_sessions(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} sessions.")


@maintenance_group.command('cleanup-audit-logs')
@with_appcontext
def cleanup_audit_logs_cli():
    """Delete audit entries past their retention window."""
    results = maintenance_service.cleanup_audit_logs()
    for prefix, deleted in results.items():
        days = maintenance_service.RETENTION_POLICIES[prefix]
        click.echo(f"{prefix:<14} {deleted:>6} deleted (retention {days} days)")


@maintenance_group.command('cleanup-inactive-users')
@click.option('--retention-years', type=int, default=7, show_default=True)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def cleanup_inactive_users_cli(retention_years, yes):
    """Delete non-admin users with no activity for the retention window."""
    if not yes:
        click.confirm(f"WARN This deletes users inactive for {retention_years} years. Continue?", abort=True)
    deleted = maintenance_service.cleanup_inactive_users(retention_years=retention_years)
    click.echo(f"Deleted {deleted} inactive users.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(memberships_group)
    app.cli.add_command(maintenance_group)
