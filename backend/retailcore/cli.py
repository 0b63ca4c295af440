# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/retailcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "retailcore:create_app" (PowerShell: $env:FLASK_APP="retailcore:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Tenant / store bootstrap:
# - python -m flask tenants create --name "Acme Corp" --code "ACME"
#   Create a new tenant.
# - python -m flask tenants list
#   List all tenants.
# - python -m flask stores create --tenant-id 1 --name "Main Street" --code "MAIN"
#   Create a store within a tenant.
#
# Catalog bootstrap:
# - python -m flask products create --tenant-id 1 --sku "WIDGET-1" --name "Widget" --price-cents 1000 --tax-rate 0.10
#   Create a product (tax rate as a decimal fraction, or --tax-rate-bps).
#
# Inventory inspection:
# - python -m flask inventory verify-ledger --tenant-id 1 [--store-id 1] [--product-id 7]
#   Check ledger continuity and stock level agreement; exits non-zero on issues.
#
# Maintenance:
# - python -m flask maintenance purge-parked-sales
#   Delete expired parked sales.
# - python -m flask events drain --limit 100
#   Claim pending events, echo them, and mark them completed.
#
# Migrations:
# - python -m flask db upgrade

import json

import click
from flask.cli import with_appcontext

from .errors import CoreError
from .extensions import db
from .models import Store, Tenant
from .services import event_service, inventory_service, parked_sale_service
from .services.catalog_service import create_product
from .services.pricing import rate_to_bps


# =============================================================================
# TENANT / STORE COMMANDS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Stores'}")
    click.echo("="*70)

    for tenant in tenants:
        store_count = db.session.query(Store).filter_by(tenant_id=tenant.id).count()
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<15} {active_str:<8} {store_count}")

    click.echo("="*70 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant."""
    existing = db.session.query(Tenant).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--name', required=True, help='Store name')
@click.option('--code', help='Store code (unique within tenant)')
@with_appcontext
def create_store_cli(tenant_id, name, code):
    """Add a store to a tenant."""
    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if not tenant:
        click.echo(f"FAIL Tenant ID {tenant_id} not found")
        return

    if code:
        existing = db.session.query(Store).filter_by(tenant_id=tenant_id, code=code).first()
        if existing:
            click.echo(f"FAIL Store code '{code}' already exists in this tenant")
            return

    store = Store(tenant_id=tenant_id, name=name, code=code, is_active=True)
    db.session.add(store)
    db.session.commit()

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}) in tenant '{tenant.name}'")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('products')
def products_group():
    """Minimal catalog bootstrap commands."""


@products_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--cost-cents', type=int, default=0, show_default=True)
@click.option('--tax-rate', type=str, default=None, help='Decimal fraction, e.g. 0.0825')
@click.option('--tax-rate-bps', type=int, default=None, help='Basis points, e.g. 825')
@click.option('--untracked', is_flag=True, help='Do not track inventory for this product')
@click.option('--allow-negative', is_flag=True, help='Allow selling below zero on hand')
@with_appcontext
def create_product_cli(tenant_id, sku, name, price_cents, cost_cents, tax_rate, tax_rate_bps, untracked, allow_negative):
    """Create a product."""
    try:
        if tax_rate_bps is None:
            tax_rate_bps = rate_to_bps(tax_rate) if tax_rate is not None else 0
        product = create_product(
            tenant_id,
            sku=sku,
            name=name,
            price_cents=price_cents,
            cost_cents=cost_cents,
            tax_rate_bps=tax_rate_bps,
            track_inventory=not untracked,
            allow_negative_stock=allow_negative,
        )
    except CoreError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created product: {product.sku} (ID: {product.id}) at {product.price_cents} cents")


# =============================================================================
# INVENTORY COMMANDS
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('verify-ledger')
@click.option('--tenant-id', type=int, required=True)
@click.option('--store-id', type=int, default=None)
@click.option('--product-id', type=int, default=None)
@with_appcontext
def verify_ledger_cli(tenant_id, store_id, product_id):
    """Verify ledger chain continuity and stock level agreement."""
    issues = inventory_service.verify_ledger_chain(tenant_id, store_id=store_id, product_id=product_id)

    if not issues:
        click.echo("PASS Ledger chain and stock levels agree")
        return

    for issue in issues:
        click.echo(f"FAIL {json.dumps(issue, sort_keys=True)}")
    raise click.exceptions.Exit(1)


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-parked-sales')
@with_appcontext
def purge_parked_sales_cli():
    """Delete parked sales past their expiry."""
    deleted = parked_sale_service.purge_expired_parked_sales()
    click.echo(f"Deleted {deleted} expired parked sales.")


@click.group('events')
def events_group():
    """Downstream event queue commands."""


@events_group.command('drain')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def drain_events_cli(limit):
    """Claim pending events, print them as JSON lines, and mark them completed."""
    events = event_service.claim_pending_events(limit=limit)
    if not events:
        click.echo("No pending events.")
        return

    ids = []
    for event in events:
        click.echo(json.dumps(event.to_dict(), sort_keys=True, default=str))
        ids.append(event.id)

    completed = event_service.mark_events_completed(ids)
    click.echo(f"Completed {completed} events.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tenants_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(maintenance_group)
    app.cli.add_command(events_group)
