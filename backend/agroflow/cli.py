# Overview: Flask CLI command groups for bootstrap, users and credit follow-up.

# backend/agroflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-password "..."]
#   Idempotent bootstrap: creates tables and the default admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username clerk --password "..." --role staff
#   Create a user (prompts if options are omitted). Customer users need --customer-id.
#
# Credit follow-up:
# - python -m flask notifications overdue [--as-of 2024-06-30]
#   Print every customer with overdue credit sales.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, ROLES
from .money import from_cents
from .services.auth_service import create_user, PasswordValidationError
from .services import notification_service
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', help='Admin username')
@click.option('--admin-password', default='Password123', help='Admin password')
@with_appcontext
def init_system(admin_username, admin_password):
    """
    Initialize AgroFlow: schema and a default admin user.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing AgroFlow...")

    db.create_all()
    click.echo("PASS Tables ready")

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"PASS Using existing admin user: {existing.username} (ID: {existing.id})")
        return

    try:
        user = create_user(admin_username, admin_password, role=ROLE_ADMIN)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        return
    click.echo(f"PASS Created admin user: {user.username} (ID: {user.id})")


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


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', default=None, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--customer-id', type=int, default=None, help='Customer account (customer role only)')
@with_appcontext
def create_user_cli(username, email, password, role, customer_id):
    """
    Create a new user.

    Password must be 8+ characters with at least one letter and one digit.
    """
    try:
        user = create_user(username, password, role=role, email=email, customer_id=customer_id)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        return
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {user.username} with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@click.group('notifications')
def notifications_group():
    """Credit follow-up commands."""


@notifications_group.command('overdue')
@click.option('--as-of', default=None, help='Date to evaluate (YYYY-MM-DD, default today)')
@with_appcontext
def overdue_cli(as_of):
    """List customers with overdue credit sales."""
    try:
        as_of_date = parse_iso_date(as_of) if as_of else None
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")

    report = notification_service.overdue_report(as_of_date)
    if not report:
        click.echo("PASS No overdue credit sales")
        return

    for row in report:
        click.echo(
            f"{row['customer_code']:<12} {row['customer_name']:<30} "
            f"overdue {from_cents(row['total_overdue_cents'])}"
        )
        for n in row["notifications"]:
            click.echo(f"    {n['document_number']}  due {n['due_date']}  {n['days_overdue']}d  {n['amount']:.2f}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(notifications_group)
