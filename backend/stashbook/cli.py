# Overview: Flask CLI command groups for bootstrap, inspection, and ledger maintenance.

# backend/stashbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="stashbook:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default deposit container.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data, ledger included).
#
# Products / containers:
# - python -m flask products create --name "Pistola" [--image-url URL]
# - python -m flask products list [--all]
# - python -m flask containers create --name "Baú Norte"
# - python -m flask containers list
#
# Ledger inspection/repair:
# - python -m flask ledger balances [--product-id 1]
#   Product totals, or the per-container breakdown of one product.
# - python -m flask ledger audit-transfers [--fix]
#   List one-sided transfers; --fix appends compensating movements.
#
# Sequences:
# - python -m flask sequences show
#   Last issued deposit sequence per folder.

import click
from flask.cli import with_appcontext

from .extensions import db
from .identity import Actor, MIN_ROLE_LEVEL
from .services import balance_service, container_service, products_service, sequence_service, transfer_service
from .validation import NotFoundError, ValidationError

CLI_ACTOR = Actor(uid="system", display_name="CLI", role_level=MIN_ROLE_LEVEL)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the stash ledger: tables and the default deposit container.

    Safe to run repeatedly.
    """
    click.echo("START Initializing stashbook...")
    db.create_all()

    container = container_service.ensure_default_container()
    db.session.commit()
    click.echo(f"PASS Default deposit container: {container.name} (ID: {container.id})")
    click.echo("DONE System initialized.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the movement ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('products')
def products_group():
    """Product reference data."""


@products_group.command('create')
@click.option('--name', required=True, help='Product name')
@click.option('--image-url', default=None, help='Image URL')
@with_appcontext
def create_product_cli(name, image_url):
    try:
        product = products_service.create_product(name, image_url)
    except ValidationError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Created product: {product.name} (ID: {product.id})")


@products_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cli(include_inactive):
    products = products_service.list_products(include_inactive=include_inactive)
    if not products:
        click.echo("No products.")
        return
    for p in products:
        status = "active" if p.is_active else "inactive"
        click.echo(f"  {p.id:>4}  {p.name:<40} {status}")


@click.group('containers')
def containers_group():
    """Stock containers."""


@containers_group.command('create')
@click.option('--name', required=True, help='Container name (unique)')
@with_appcontext
def create_container_cli(name):
    try:
        container = container_service.create_container(name)
    except ValidationError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Created container: {container.name} (ID: {container.id})")


@containers_group.command('list')
@with_appcontext
def list_containers_cli():
    containers = container_service.list_containers()
    if not containers:
        click.echo("No containers.")
        return
    for c in containers:
        click.echo(f"  {c.id:>4}  {c.name}")


@click.group('ledger')
def ledger_group():
    """Ledger inspection and repair."""


@ledger_group.command('balances')
@click.option('--product-id', type=int, default=None, help='Show the per-container breakdown of one product')
@with_appcontext
def balances_cli(product_id):
    if product_id is None:
        for row in balance_service.product_totals():
            click.echo(f"  {row['product_id']:>4}  {row['product_name']:<40} {row['balance']:>10}")
        return

    rows = balance_service.balances_by_container(product_id)
    for row in rows:
        name = row["container_name"] or ("(global)" if row["container_id"] is None else f"#{row['container_id']}")
        click.echo(f"  {name:<30} in={row['ins']:<8} out={row['outs']:<8} balance={row['balance']}")
    click.echo(f"  TOTAL {sum(r['balance'] for r in rows)}")


@ledger_group.command('audit-transfers')
@click.option('--fix', is_flag=True, help='Append compensating movements for one-sided transfers')
@with_appcontext
def audit_transfers_cli(fix):
    """
    Find transfers with a missing leg.

    Read-only unless --fix is given.
    """
    unpaired = transfer_service.find_unpaired_transfers()
    if not unpaired:
        click.echo("PASS No one-sided transfers.")
        return

    click.echo(f"WARN {len(unpaired)} one-sided transfer(s):")
    for item in unpaired:
        legs = ", ".join(f"#{leg['id']} {leg['type']} {leg['quantity']}" for leg in item["legs"])
        click.echo(f"  {item['transfer_ref']}: {legs}")

    if not fix:
        click.echo("Run with --fix to compensate.")
        return

    for item in unpaired:
        try:
            movements = transfer_service.repair_unpaired_transfer(item["transfer_ref"], CLI_ACTOR)
        except (ValidationError, NotFoundError, balance_service.InsufficientBalance) as e:
            db.session.rollback()
            click.echo(f"FAIL {item['transfer_ref']}: {e}")
            continue
        click.echo(f"FIXED {item['transfer_ref']}: {len(movements)} compensating movement(s)")


@click.group('sequences')
def sequences_group():
    """Deposit identifier sequences."""


@sequences_group.command('show')
@with_appcontext
def show_sequences_cli():
    counters = sequence_service.list_counters()
    if not counters:
        click.echo("No sequences allocated yet.")
        return
    for counter in counters:
        click.echo(f"  folder {counter.scope_key:<6} last={counter.last_value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(products_group)
    app.cli.add_command(containers_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(sequences_group)
