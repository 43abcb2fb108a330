# Overview: Flask CLI command groups for bootstrap, demo data, and stock maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Shop bootstrap:
# - python -m flask shop init-db
#   Create any missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask shop reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask shop create-admin --email admin@shop.local --name "Admin" --password "Password123"
#   Create an admin account (prompts if options are omitted).
# - python -m flask shop seed-demo
#   Create a few categories and products with linked inventory records.
#
# Stock inspection/repair:
# - python -m flask stock low
#   List active inventory records at or below their threshold.
# - python -m flask stock record SKU0001 IN 25 --reason "Supplier delivery"
#   Append one movement to the ledger.
# - python -m flask stock reconcile [--fix]
#   Report records whose balance disagrees with their product or ledger; --fix
#   appends an ADJUSTMENT bringing the record back in line.

import click
from sqlalchemy import func
from flask.cli import with_appcontext

from .errors import StorefrontError
from .extensions import db
from .models import InventoryRecord, Product, StockMovement, User
from .models.auth import ROLE_ADMIN
from .models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_TYPES


@click.group('shop')
def shop_group():
    """Shop bootstrap commands."""


@shop_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@shop_group.command('reset-db')
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
    click.echo("START Recreating schema...")
    db.create_all()
    click.echo("PASS Database reset complete")


@shop_group.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--name', prompt=True, default='Administrator')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin(email, name, password):
    """Create an admin account."""
    from .services.auth_service import create_user

    try:
        user = create_user(name, email, password, role=ROLE_ADMIN)
    except StorefrontError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created admin {user.email} (ID: {user.id}, code: {user.customer_code})")


DEMO_PRODUCTS = [
    # (category, name, price_cents, stock, unit, weight, tags, featured)
    ("Coffee", "House Blend Beans", 1299, 40, "g", 500, ["coffee", "beans"], True),
    ("Coffee", "Decaf Espresso", 1499, 8, "g", 250, ["coffee", "decaf"], False),
    ("Tea", "Sencha Green Tea", 899, 25, "g", 100, ["tea", "green"], True),
    ("Tea", "Earl Grey Tin", 1099, 0, "piece", None, ["tea", "black"], False),
    ("Snacks", "Almond Biscotti", 599, 60, "piece", None, ["snack", "almond"], False),
]


@shop_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo categories and products; each product gets a linked inventory record."""
    from .services import catalog_service, inventory_service

    for category in sorted({row[0] for row in DEMO_PRODUCTS}):
        if catalog_service.resolve_category(category) is None:
            catalog_service.create_category(patch={"name": category})
            click.echo(f"PASS Created category {category}")

    created = 0
    for category, name, price, stock, unit, weight, tags, featured in DEMO_PRODUCTS:
        record = db.session.query(InventoryRecord).filter(InventoryRecord.name == name).first()
        if record:
            click.echo(f"SKIP {name} already seeded ({record.sku})")
            continue

        sku = inventory_service.generate_sku(name)
        product = catalog_service.create_product(
            patch={
                "sku": sku,
                "name": name,
                "price_cents": price,
                "unit": unit,
                "weight": weight,
                "is_featured": featured,
            },
            tags=tags,
            category=category,
        )
        record = inventory_service.create_record(
            patch={
                "sku": sku,
                "name": name,
                "stock": stock,
                "unit": unit,
                "selling_price_cents": price,
                "cost_price_cents": price // 2,
            },
            product_id=product["id"],
        )
        created += 1
        click.echo(f"PASS {record.sku} {name}: {record.stock} on hand")

    click.echo(f"Seeded {created} product(s)")


@click.group('stock')
def stock_group():
    """Stock ledger inspection and repair."""


@stock_group.command('low')
@with_appcontext
def low_stock():
    """List active inventory records at or below their threshold."""
    from .services.inventory_service import low_stock_records

    records = low_stock_records()
    if not records:
        click.echo("No low-stock records")
        return
    for r in records:
        click.echo(f"{r['sku']:<12} {r['name']:<30} stock={r['stock']:<6} threshold={r['threshold']}")


@stock_group.command('record')
@click.argument('sku')
@click.argument('movement_type', type=click.Choice(MOVEMENT_TYPES, case_sensitive=False))
@click.argument('quantity', type=int)
@click.option('--reason', required=True, help='Why the stock changed')
@click.option('--reference', default=None, help='Supplier invoice, order number, ...')
@with_appcontext
def record(sku, movement_type, quantity, reason, reference):
    """Append one movement to the stock ledger."""
    from .services.stock_service import record_movement

    try:
        movement = record_movement(sku, movement_type, quantity, reason, reference=reference)
    except StorefrontError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS {movement.type} {movement.quantity}: {movement.previous_stock} -> {movement.new_stock}")


@stock_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Append ADJUSTMENT movements for drifted records')
@with_appcontext
def reconcile(fix):
    """
    Compare every inventory record with its product and its own ledger.

    A record drifts when a linked product holds a different balance, or
    when the last movement's new_stock (0 with no movements) is not the
    record's balance. Product.stock is authoritative; with --fix one
    ADJUSTMENT per drifted record brings the record and its ledger back in
    line, so the history explains the jump.
    """
    from .services.stock_service import append_movement

    last_ids = (
        db.session.query(StockMovement.record_id, func.max(StockMovement.id).label("last_id"))
        .group_by(StockMovement.record_id)
        .subquery()
    )
    rows = (
        db.session.query(InventoryRecord, Product, StockMovement.new_stock)
        .outerjoin(Product, InventoryRecord.product_id == Product.id)
        .outerjoin(last_ids, last_ids.c.record_id == InventoryRecord.id)
        .outerjoin(StockMovement, StockMovement.id == last_ids.c.last_id)
        .order_by(InventoryRecord.id)
        .all()
    )

    drifted = []
    for rec, product, ledger in rows:
        ledger = ledger or 0
        product_drift = product is not None and product.stock != rec.stock
        if product_drift:
            click.echo(f"DRIFT {rec.sku}: record={rec.stock} product={product.stock}")
        if ledger != rec.stock:
            click.echo(f"DRIFT {rec.sku}: record={rec.stock} ledger={ledger}")
        if product_drift or ledger != rec.stock:
            drifted.append((rec, product))

    if not drifted:
        click.echo("PASS All records match their products and ledgers")
        return

    if not fix:
        raise click.ClickException(f"{len(drifted)} record(s) out of sync (rerun with --fix)")

    for rec, product in drifted:
        target = product.stock if product is not None else rec.stock
        append_movement(
            rec,
            MOVEMENT_ADJUSTMENT,
            target,
            "Reconciled with product stock" if product is not None else "Reconciled with ledger",
            sync_product=False,
        )
    db.session.commit()
    click.echo(f"PASS Reconciled {len(drifted)} record(s)")


@click.group('users')
def users_group():
    """User inspection."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    for u in users:
        status = "active" if u.is_active else "disabled"
        click.echo(f"{u.id:<5} {u.email:<32} {u.role:<9} {u.customer_code or '-':<12} {status}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(shop_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(users_group)
