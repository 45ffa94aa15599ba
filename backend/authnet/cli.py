# Overview: Flask CLI command groups for bootstrap, catalog seeding and network inspection.

# backend/authnet/cli.py
# Commands Legend (run from the backend directory, FLASK_APP=wsgi.py):
#
# System bootstrap/repair:
# - flask system init-db
#   Create any missing tables (idempotent).
# - flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog seeding (catalog CRUD proper lives outside this service):
# - flask catalog add-product --manufacturer mfr-001 --sku SOFA-1 --name "Sofa" --price-cents 100000 --category sofas
# - flask catalog list [--manufacturer mfr-001]
#
# Network inspection:
# - flask network companies --grantor mfr-001
#   Tier company rollup over the grants a manufacturer issued.
# - flask network pending --grantor mfr-001
#   Requests waiting on a grantor's decision.

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import CatalogProduct
from .services import approval_service, pricing_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('catalog')
def catalog_group():
    """Catalog seeding for local development and tests."""


@catalog_group.command('add-product')
@click.option('--manufacturer', required=True, help='Manufacturer id owning the product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=click.IntRange(min=1), required=True, help='Base price in cents')
@click.option('--category', default=None, help='Category id')
@with_appcontext
def add_product_cli(manufacturer, sku, name, price_cents, category):
    """Insert one catalog product."""
    product = CatalogProduct(
        manufacturer_id=manufacturer,
        sku=sku,
        name=name,
        category_id=category,
        base_price_cents=price_cents,
        is_active=True,
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"SKU '{sku}' already exists for {manufacturer}")

    click.echo(f"PASS Created product {product.id}: {product.name} ({product.sku})")


@catalog_group.command('list')
@click.option('--manufacturer', default=None, help='Filter by manufacturer id')
@with_appcontext
def list_products_cli(manufacturer):
    """List catalog products."""
    query = db.session.query(CatalogProduct)
    if manufacturer:
        query = query.filter_by(manufacturer_id=manufacturer)
    products = query.order_by(CatalogProduct.id).all()

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Manufacturer':<16} {'SKU':<14} {'Name':<25} {'Category':<14} {'Price'}")
    click.echo("="*90)
    for p in products:
        click.echo(
            f"{p.id:<5} {p.manufacturer_id:<16} {p.sku:<14} {p.name[:25]:<25} "
            f"{p.category_id or '-':<14} {p.base_price_cents / 100:.2f}"
        )
    click.echo("="*90 + "\n")


@click.group('network')
def network_group():
    """Authorization network inspection."""


@network_group.command('companies')
@click.option('--grantor', required=True, help='Grantor (manufacturer) id')
@with_appcontext
def companies_cli(grantor):
    """Tier company rollup for one grantor."""
    rollups = pricing_service.tier_company_rollups(grantor)
    if not rollups:
        click.echo("No authorizations issued.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'Company':<30} {'Members':<9} {'Active':<8} {'Avg MinDisc%':<14} {'Avg Comm%':<11} {'Founded'}")
    click.echo("="*100)
    for row in rollups:
        name = (row["tier_company_name"] or row["tier_company_id"])[:30]
        click.echo(
            f"{name:<30} {row['member_count']:<9} {row['active_count']:<8} "
            f"{row['avg_min_discount_rate']:<14} {row['avg_commission_rate']:<11} {row['founded_at'] or '-'}"
        )
    click.echo("="*100 + "\n")


@network_group.command('pending')
@click.option('--grantor', required=True, help='Grantor (manufacturer) id')
@with_appcontext
def pending_cli(grantor):
    """Requests waiting on a grantor."""
    pending = approval_service.list_pending_requests(grantor)
    if not pending:
        click.echo("No pending requests.")
        return

    for req in pending:
        click.echo(
            f"#{req.id:<5} {req.grantee_type:<13} {req.grantee_id:<20} "
            f"scope={req.requested_scope:<9} {req.grantee_name or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(network_group)
