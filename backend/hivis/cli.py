# Overview: Flask CLI command groups for bootstrap, intake and ledger maintenance.

# backend/hivis/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="hivis:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Members:
# - python -m flask users create --email a@b.com --suburb Parramatta [--card 4111]
#   Register a member.
# - python -m flask users list
#
# Rewards catalog:
# - python -m flask rewards seed
#   Insert the default catalog (idempotent by name).
#
# Intake:
# - python -m flask intake import-csv sales.csv
#   Ingest a vending sales export; prints processed/duplicate/error counts.
# - python -m flask intake unprocessed
#   Show the manual-match queue.
#
# Loyalty maintenance:
# - python -m flask loyalty reconcile [--fix]
#   Compare cached balances with the ledger; --fix rewrites drifted balances.
# - python -m flask loyalty reset-streak-rewards [--user-id 3 --user-id 7]
#   Re-arm the streak reward for everyone (or the given members).
#
# Seasons:
# - python -m flask seasons rotate
#   Make this month's season active (normally done by the first award of the month).
# - python -m flask seasons list
#
# Machines:
# - python -m flask machines add M1 --name "Depot Foyer" --location "12 Smith St, Parramatta"
# - python -m flask machines set-status M1 offline
#   Record a status report (online | offline); stamps last ping.
# - python -m flask machines list

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import (
    award_service,
    intake_service,
    ledger_service,
    machine_service,
    matcher_service,
    redemption_service,
    season_service,
)
from .services.intake_sources import SOURCE_CSV
from .services.machine_service import MachineNotFoundError
from .services.user_service import create_user
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask rewards seed' to load the catalog.")


@click.group('users')
def users_group():
    """Member inspection and bootstrap."""


@users_group.command('create')
@click.option('--email', prompt=True)
@click.option('--first-name', default=None)
@click.option('--last-name', default=None)
@click.option('--suburb', default=None)
@click.option('--card', 'card_number', default=None)
@click.option('--phone', 'phone_number', default=None)
@click.option('--admin', 'is_admin', is_flag=True)
@with_appcontext
def create_user_cmd(email, first_name, last_name, suburb, card_number, phone_number, is_admin):
    """Register a member."""
    try:
        user = create_user(
            email,
            first_name=first_name,
            last_name=last_name,
            suburb=suburb,
            card_number=card_number,
            phone_number=phone_number,
            is_admin=is_admin,
        )
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.id} ({user.email})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List members with their loyalty state."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for u in users:
        click.echo(
            f"{u.id:>5}  {u.email:<32} {u.suburb or '-':<16} {u.loyalty_tier:<10} "
            f"{u.total_points:>6} pts  card={u.card_number or '-'}"
        )


@click.group('rewards')
def rewards_group():
    """Reward catalog commands."""


@rewards_group.command('seed')
@with_appcontext
def seed_rewards():
    """Insert the default reward catalog."""
    added = redemption_service.seed_default_rewards()
    click.echo(f"PASS Added {added} reward(s)")


@click.group('intake')
def intake_group():
    """External transaction intake commands."""


@intake_group.command('import-csv')
@click.argument('csv_file', type=click.File('r'))
@with_appcontext
def import_csv(csv_file):
    """Ingest a vending sales CSV export."""
    try:
        summary = intake_service.ingest_payload(csv_file.read(), SOURCE_CSV)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"Processed {summary['processed']} ({summary['matched']} matched, {summary['unmatched']} queued), "
        f"{summary['duplicates']} duplicate(s), {len(summary['errors'])} error(s)"
    )
    for err in summary["errors"]:
        click.echo(f"  row {err['row']}: {err['error']}")


@intake_group.command('unprocessed')
@click.option('--limit', default=50, show_default=True)
@with_appcontext
def list_unprocessed(limit):
    """Show external transactions waiting for a manual match."""
    rows = matcher_service.get_unprocessed(limit=limit)
    if not rows:
        click.echo("Queue is empty.")
        return
    for r in rows:
        click.echo(f"{r.id:>5}  {r.external_id:<24} card={r.card_number or '-':<12} {r.amount:>6}c  {r.product_name}")


@click.group('loyalty')
def loyalty_group():
    """Ledger and loyalty state maintenance."""


@loyalty_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Rewrite drifted balances from the ledger')
@with_appcontext
def reconcile(fix):
    """Report (and optionally repair) members whose balance disagrees with the ledger."""
    drift = ledger_service.find_balance_drift()
    if not drift:
        click.echo("PASS All balances match the ledger")
        return
    for row in drift:
        click.echo(
            f"FAIL user {row['user_id']} ({row['email']}): cached={row['cached_total']} "
            f"ledger={row['ledger_total']}"
        )
        if fix:
            ledger_service.reconcile_balance(row["user_id"])
            click.echo(f"     fixed user {row['user_id']}")
    if not fix:
        raise click.ClickException(f"{len(drift)} member(s) drifted; rerun with --fix to repair")


@loyalty_group.command('reset-streak-rewards')
@click.option('--user-id', 'user_ids', multiple=True, type=int, help='Limit to these members')
@with_appcontext
def reset_streak_rewards(user_ids):
    """Allow members to earn the streak reward again."""
    count = award_service.reset_streak_rewards(list(user_ids) if user_ids else None)
    click.echo(f"PASS Reset streak reward for {count} member(s)")


@click.group('seasons')
def seasons_group():
    """Monthly leaderboard seasons."""


@seasons_group.command('rotate')
@with_appcontext
def rotate_season():
    """Activate the current month's season."""
    season = award_service.prepare_season()
    click.echo(f"PASS Active season: {season.name}")


@seasons_group.command('list')
@with_appcontext
def list_seasons():
    for s in season_service.list_seasons():
        marker = "*" if s.is_active else " "
        click.echo(f"{marker} {s.id:>4}  {s.name}")


@click.group('machines')
def machines_group():
    """Vending machine registry."""


@machines_group.command('add')
@click.argument('machine_id')
@click.option('--name', required=True)
@click.option('--location', required=True)
@with_appcontext
def add_machine(machine_id, name, location):
    """Register a machine by its operator id."""
    try:
        machine = machine_service.register_machine(machine_id, name, location)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Registered machine {machine.id} ({machine.name})")


@machines_group.command('set-status')
@click.argument('machine_id')
@click.argument('status', type=click.Choice(['online', 'offline']))
@with_appcontext
def set_machine_status(machine_id, status):
    try:
        machine = machine_service.update_status(machine_id, status == 'online')
    except MachineNotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Machine {machine.id} is {'online' if machine.is_online else 'offline'}")


@machines_group.command('list')
@with_appcontext
def list_machines():
    machines = machine_service.list_machines()
    if not machines:
        click.echo("No machines registered.")
        return
    for m in machines:
        status = "online" if m.is_online else "offline"
        click.echo(f"{m.id:<12} {m.name:<24} {status:<8} {m.location}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(rewards_group)
    app.cli.add_command(intake_group)
    app.cli.add_command(loyalty_group)
    app.cli.add_command(seasons_group)
    app.cli.add_command(machines_group)
