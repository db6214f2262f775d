# Overview: Flask CLI command groups for bootstrap, tenant setup and sequence inspection.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Store management (MULTI-TENANT):
# - python -m flask stores list
#   List all stores.
# - python -m flask stores create --name "Main Street" --code "MAIN" --currency USD
#   Create a new store (tenant).
#
# Sequence inspection:
# - python -m flask sequences peek --store-id 1
#   Show the last issued order/receivable/sale numbers of a store.

import click
from flask.cli import with_appcontext

from .errors import BackofficeError
from .extensions import db
from .services import sequence_service, tenant_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask stores create' to add a store.")


@click.group('stores')
def stores_group():
    """Store (tenant) management commands."""


@stores_group.command('list')
@with_appcontext
def list_stores():
    """List all stores."""
    stores = tenant_service.list_stores()

    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Currency'}")
    click.echo("="*60)

    for store in stores:
        click.echo(f"{store.id:<5} {store.name:<30} {store.code or '-':<15} {store.currency}")

    click.echo("="*60 + "\n")


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', help='Short code (unique)')
@click.option('--currency', help='ISO currency code (defaults to DEFAULT_CURRENCY)')
@with_appcontext
def create_store_cli(name, code, currency):
    """Create a new store (tenant)."""
    try:
        store = tenant_service.create_store(name, code=code, currency=currency)
    except BackofficeError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Code: {store.code or '-'})")


@click.group('sequences')
def sequences_group():
    """Per-store sequence inspection."""


@sequences_group.command('peek')
@click.option('--store-id', type=int, required=True, help='Store ID')
@with_appcontext
def peek_sequences(store_id):
    """Show the last issued number of every counter. Allocates nothing."""
    try:
        store = tenant_service.require_store(store_id)
    except BackofficeError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"Store {store.id} ({store.name})")
    for counter in (sequence_service.COUNTER_ORDER,
                    sequence_service.COUNTER_RECEIVABLE,
                    sequence_service.COUNTER_SALE):
        last = sequence_service.current_value(store.id, counter)
        click.echo(f"  {counter:<12} last={last:<6} next={last + 1}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(sequences_group)
