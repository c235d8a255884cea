# Overview: Flask CLI command groups for bootstrap, locations, and billing inspection.

# backend/warehouse/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to warehouse (PowerShell: $env:FLASK_APP="warehouse").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Locations:
# - python -m flask locations add A1-L1 --capacity 1 --aisle A --rack 1 --level 1
#   Register a storage location (capacity-bearing locations hold one active pallet).
# - python -m flask locations list [--free]
#   List locations with their occupancy flag.
#
# Billing inspection:
# - python -m flask billing occupancy --customer "Acme" --start 2024-01-01 --end 2024-01-07
#   Replay the ledger and print pallet-days per day.
# - python -m flask billing aging [--as-of 2024-03-01]
#   Outstanding invoice balances by days past due.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import billing_service, location_service
from .services.occupancy_service import compute_occupancy
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the append-only ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('locations')
def locations_group():
    """Storage location management."""


@locations_group.command('add')
@click.argument('location_id')
@click.option('--capacity', type=int, default=None, help='Pallet capacity (omit for unconstrained)')
@click.option('--type', 'location_type', default=None, help='Location type (default rack)')
@click.option('--aisle', default=None)
@click.option('--rack', type=int, default=None)
@click.option('--level', type=int, default=None)
@with_appcontext
def add_location_cli(location_id, capacity, location_type, aisle, rack, level):
    """
    Register a location.

    Example:
        flask locations add A1-L1 --capacity 1
        flask locations add DOCK --type staging
    """
    try:
        location = location_service.create_location(
            location_id=location_id,
            capacity_pallets=capacity,
            location_type=location_type,
            aisle=aisle,
            rack=rack,
            level=level,
        )
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Location {location.id} created.")


@locations_group.command('list')
@click.option('--free', is_flag=True, help='Only unoccupied locations')
@with_appcontext
def list_locations_cli(free):
    """List all locations."""
    locations = location_service.list_locations(only_free=free)

    if not locations:
        click.echo("No locations found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<16} {'Type':<10} {'Capacity':<10} {'Occupied'}")
    click.echo("="*70)

    for location in locations:
        capacity = location.capacity_pallets if location.capacity_pallets is not None else "-"
        occupied = "YES" if location.is_occupied else "no"
        click.echo(f"{location.id:<16} {location.location_type or '':<10} {str(capacity):<10} {occupied}")

    click.echo("="*70)
    click.echo(f"Total: {len(locations)} location(s)\n")


@click.group('billing')
def billing_group():
    """Billing inspection commands."""


@billing_group.command('occupancy')
@click.option('--customer', required=True, help='Customer name')
@click.option('--start', required=True, help='First day (YYYY-MM-DD)')
@click.option('--end', required=True, help='Last day (YYYY-MM-DD)')
@with_appcontext
def occupancy_cli(customer, start, end):
    """Replay the ledger for a customer and print daily occupancy."""
    try:
        result = compute_occupancy(customer, start, end)
    except ValidationError as e:
        raise click.ClickException(str(e))

    for day in result.daily:
        click.echo(f"{day['date']}  {day['occupied_pallets']:>6}")
    click.echo("-"*20)
    click.echo(f"Pallet-days:     {result.pallet_days}")
    click.echo(f"Pallet-weeks:    {result.to_dict()['pallet_weeks']}")
    click.echo(f"Handled pallets: {result.handled_pallets}")


@billing_group.command('aging')
@click.option('--as-of', 'as_of', default=None, help='Reference day (YYYY-MM-DD, default today)')
@with_appcontext
def aging_cli(as_of):
    """Outstanding invoice balances by days past due."""
    try:
        report = billing_service.aging_report(as_of)
    except ValidationError as e:
        raise click.ClickException(str(e))

    click.echo(f"Aging as of {report['as_of']}")
    for name, bucket in report["buckets"].items():
        click.echo(f"  {name:<10} {bucket['count']:>4}  {bucket['amount']:>12}")
    click.echo(f"  {'total':<10} {report['total_count']:>4}  {report['total_outstanding']:>12}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(billing_group)
