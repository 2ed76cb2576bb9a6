# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/coldchain/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to coldchain (PowerShell: $env:FLASK_APP="coldchain").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (safe to re-run).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Sites (tenants):
# - python -m flask sites list
#   List all sites.
# - python -m flask sites create --name "Kigali Central" --location "Nyarugenge"
#   Create a new site.
#
# Stock ledger:
# - python -m flask ledger verify [--product-id 12]
#   Recompute each product's quantity from its movements and compare with
#   the cached balance. Exits 1 if any product is out of balance.

import sys

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .errors import NotFoundError
from .extensions import db
from .models import Product, Site
from .services import stock_ledger_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Database schema ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask sites create' to add a site.")


@click.group('sites')
def sites_group():
    """Site (tenant) management commands."""


@sites_group.command('list')
@with_appcontext
def list_sites():
    sites = db.session.query(Site).order_by(Site.id).all()
    if not sites:
        click.echo("No sites found.")
        return
    for site in sites:
        status = "deleted" if site.deleted_at else "active"
        click.echo(f"{site.id:>4}  {site.name:<30} {site.location or '-':<25} {status}")


@sites_group.command('create')
@click.option('--name', required=True, help='Site name (used in invoice numbers)')
@click.option('--location', default=None, help='Physical location')
@with_appcontext
def create_site(name, location):
    """Create a site. Its name becomes the SITE part of INV-<SITE>-<YYYY>-<seq>."""
    site = Site(name=name.strip(), location=location)
    db.session.add(site)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL A site named {name!r} already exists.", err=True)
        sys.exit(1)
    click.echo(f"PASS Created site: {site.name} (ID: {site.id})")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def verify_ledger(product_id):
    """Check cached product quantities against the movement ledger."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    mismatches = 0
    for pid in product_ids:
        try:
            result = stock_ledger_service.verify_product_balance(pid)
        except NotFoundError as e:
            click.echo(f"FAIL {e.message}", err=True)
            sys.exit(1)
        if result["balanced"]:
            click.echo(f"PASS product {pid}: {result['cached_quantity_kg']}kg")
        else:
            mismatches += 1
            click.echo(
                f"FAIL product {pid}: cached {result['cached_quantity_kg']}kg, "
                f"ledger {result['ledger_quantity_kg']}kg"
            )

    click.echo(f"Checked {len(product_ids)} product(s), {mismatches} out of balance.")
    if mismatches:
        sys.exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sites_group)
    app.cli.add_command(ledger_group)
