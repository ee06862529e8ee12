# Overview: Flask CLI command groups for bootstrap and maintenance.

# backend/grocerymart/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; prefer `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Accounts:
# - python -m flask accounts create-admin --email admin@grocerymart.local --name "Store Admin" --password "Password123"
#   Create an admin account (prompts if options are omitted).
# - python -m flask accounts backfill-referrals
#   Assign missing referral codes and recompute referral levels.
#
# Catalog:
# - python -m flask products create --sku MILK-1L --name "Milk 1L" --price-cents 6500 --stock 40
#   Create a catalog product.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StoreError
from .models.accounts import ROLE_ADMIN
from .services import auth_service, inventory_service, referral_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@click.group('accounts')
def accounts_group():
    """Account management commands."""


@accounts_group.command('create-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin(email, name, password):
    """
    Create an admin account.

    Password must be at least 8 characters with a letter and a digit.
    """
    try:
        account = auth_service.register_account(
            name=name,
            email=email,
            password=password,
            role=ROLE_ADMIN,
        )
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created admin {account.email} (id={account.id}, referral code {account.referral_code})")


@accounts_group.command('backfill-referrals')
@with_appcontext
def backfill_referrals():
    """Assign missing referral codes and repair referral levels."""
    stats = referral_service.backfill_referrals()
    click.echo(
        f"PASS Scanned {stats['accounts_scanned']} accounts: "
        f"{stats['codes_assigned']} codes assigned, {stats['levels_fixed']} levels fixed."
    )


@click.group('products')
def products_group():
    """Catalog commands."""


@products_group.command('create')
@click.option('--sku', required=True, help='Unique SKU')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=click.IntRange(min=0), required=True, help='Unit price in cents')
@click.option('--stock', type=click.IntRange(min=0), default=0, show_default=True, help='Units on hand')
@click.option('--category', default=None, help='Optional category')
@with_appcontext
def create_product(sku, name, price_cents, stock, category):
    """Create a catalog product."""
    try:
        product = inventory_service.create_product(
            sku=sku,
            name=name,
            price_cents=price_cents,
            stock=stock,
            category=category,
        )
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created product {product.sku} (id={product.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(products_group)
