# Overview: Flask CLI command groups for bootstrap and catalog seeding.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --name "Ada" --email ada@example.com --role customer
#   Create a user.
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users token ada@example.com
#   Issue a bearer token for a user (printed once).
# - python -m flask users revoke <token>
#   Revoke a bearer token (it stops authenticating immediately).
#
# Catalog:
# - python -m flask catalog add-city --name Colombo --main
#   Add a delivery city.
# - python -m flask catalog add-variant --product "Desk Lamp" --sku LAMP-1 --price-cents 2599 --stock 10
#   Add a product variant (creates the product if needed).
# - python -m flask catalog add-address --email ada@example.com --line1 "1 Main St" --city Colombo --default
#   Add a delivery address for a user.

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import Address, City, Product, ProductVariant, User
from .models.auth import VALID_ROLES, ROLE_CUSTOMER
from .services.session_service import create_session, revoke_session


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


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
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--phone', default=None, help='Phone number')
@click.option('--role', type=click.Choice(VALID_ROLES), default=ROLE_CUSTOMER, show_default=True, help='Role')
@with_appcontext
def create_user_cli(name, email, phone, role):
    """Create a new user."""
    try:
        user = User(name=name, email=email.strip().lower(), phone=phone, role=role, is_active=True)
        db.session.add(user)
        db.session.commit()
        click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{role}' (ID: {user.id})")
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL User with email '{email}' already exists")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<20} {'Email':<35} {'Active':<8} {'Role'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<20} {user.email:<35} {active_str:<8} {user.role}")

    click.echo("="*90 + "\n")


@users_group.command('token')
@click.argument('email')
@click.option('--ttl-hours', type=int, default=None, help='Token lifetime (defaults to SESSION_TTL_HOURS)')
@with_appcontext
def issue_token_cli(email, ttl_hours):
    """Issue a bearer token for a user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        return

    try:
        session, token = create_session(user.id, ttl_hours=ttl_hours)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Token for {user.email} (expires {session.expires_at}):")
    click.echo(token)


@users_group.command('revoke')
@click.argument('token')
@with_appcontext
def revoke_token_cli(token):
    """Revoke a bearer token."""
    if revoke_session(token.strip()):
        click.echo("PASS Token revoked")
    else:
        click.echo("FAIL Token not found or already revoked")


@click.group('catalog')
def catalog_group():
    """Catalog and delivery-area seeding commands."""


@catalog_group.command('add-city')
@click.option('--name', prompt=True, help='City name')
@click.option('--main', 'is_main_city', is_flag=True, help='Main city (cheaper, faster delivery)')
@with_appcontext
def add_city_cli(name, is_main_city):
    try:
        city = City(name=name.strip(), is_main_city=is_main_city)
        db.session.add(city)
        db.session.commit()
        kind = "main" if is_main_city else "other"
        click.echo(f"PASS Added {kind} city: {city.name} (ID: {city.id})")
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL City '{name}' already exists")


@catalog_group.command('add-variant')
@click.option('--product', 'product_name', prompt=True, help='Product name')
@click.option('--brand', default=None, help='Brand (new products only)')
@click.option('--sku', prompt=True, help='Variant SKU')
@click.option('--name', 'variant_name', default=None, help='Variant name')
@click.option('--price-cents', type=click.IntRange(min=0), prompt=True, help='Unit price in cents')
@click.option('--stock', type=click.IntRange(min=0), default=0, show_default=True, help='Initial stock')
@with_appcontext
def add_variant_cli(product_name, brand, sku, variant_name, price_cents, stock):
    """Add a product variant, creating the product if needed."""
    product = db.session.query(Product).filter_by(name=product_name).first()
    if not product:
        product = Product(name=product_name, brand=brand)
        db.session.add(product)
        db.session.flush()

    try:
        variant = ProductVariant(
            product_id=product.id,
            sku=sku,
            variant_name=variant_name or product_name,
            price_cents=price_cents,
            stock_qnt=stock,
        )
        db.session.add(variant)
        db.session.commit()
        click.echo(f"PASS Added variant {variant.sku} (ID: {variant.id}) to '{product.name}'")
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL SKU '{sku}' already exists")


@catalog_group.command('add-address')
@click.option('--email', prompt=True, help='Owner email')
@click.option('--line1', prompt=True, help='Street address')
@click.option('--line2', default=None)
@click.option('--city', 'city_name', prompt=True, help='City name (must exist)')
@click.option('--postal-code', default=None)
@click.option('--default', 'is_default', is_flag=True, help="Make this the user's default address")
@with_appcontext
def add_address_cli(email, line1, line2, city_name, postal_code, is_default):
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        return
    city = db.session.query(City).filter_by(name=city_name.strip()).first()
    if not city:
        click.echo(f"FAIL City '{city_name}' not found. Run 'python -m flask catalog add-city' first.")
        return

    if is_default:
        db.session.query(Address).filter_by(user_id=user.id, is_default=True).update({"is_default": False})

    address = Address(
        user_id=user.id,
        line1=line1,
        line2=line2,
        city_id=city.id,
        postal_code=postal_code,
        is_default=is_default,
    )
    db.session.add(address)
    db.session.commit()
    click.echo(f"PASS Added address {address.id} for {user.email}: {address.formatted()}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
