# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system check-lifecycle
#   Validate the quote/invoice/subscription transition tables and print them.
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
#   List all tenants.
# - python -m flask tenants create --name "Acme Corp" --slug acme
#   Create a new tenant.
#
# Billing sweeps (schedule these, e.g. hourly):
# - python -m flask billing expire-quotes [--tenant acme] [--as-of 2024-02-01T00:00:00Z]
#   Expire sent quotes whose validity has lapsed.
# - python -m flask billing mark-overdue [--tenant acme] [--as-of 2024-02-01T00:00:00Z]
#   Mark pending invoices past their due date as overdue.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import BillingError
from .extensions import db
from .models import Tenant
from .services import invoice_service, quote_service
from .services.lifecycle_service import (
    INVOICE_MACHINE,
    SUBSCRIPTION_MACHINE,
    StateMachineDefinitionError,
    build_quote_machine,
)
from .time_utils import parse_iso_datetime


SWEEP_ACTOR = "system:cli"


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

    click.echo("PASS Database reset complete. Run 'python -m flask tenants create' to add a tenant.")


@system_group.command('check-lifecycle')
@with_appcontext
def check_lifecycle():
    """Validate and print every lifecycle transition table."""
    allow_expired = current_app.config.get("ALLOW_ACCEPT_EXPIRED_QUOTES", False)
    machines = [build_quote_machine(allow_expired), INVOICE_MACHINE, SUBSCRIPTION_MACHINE]

    failed = False
    for machine in machines:
        try:
            machine.validate()
        except StateMachineDefinitionError as e:
            click.echo(f"FAIL {e}")
            failed = True
            continue

        click.echo(f"\nPASS {machine.entity_type} ({len(machine.transitions)} transitions)")
        for (source, event), target in sorted(machine.transitions.items()):
            click.echo(f"   {source:<10} --{event}--> {target}")

    if failed:
        raise click.exceptions.Exit(1)


# =============================================================================
# TENANT MANAGEMENT COMMANDS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id.asc()).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Slug':<15} {'Active'}")
    click.echo("="*60)

    for tenant in tenants:
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.slug:<15} {active_str}")

    click.echo("="*60 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--slug', required=True, help='URL slug (unique); also used in document numbers')
@with_appcontext
def create_tenant_cli(name, slug):
    """Create a new tenant."""
    slug = slug.strip().lower()
    existing = db.session.query(Tenant).filter_by(slug=slug).first()
    if existing:
        click.echo(f"FAIL Tenant with slug '{slug}' already exists")
        return

    tenant = Tenant(name=name, slug=slug, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Slug: {tenant.slug})")


# =============================================================================
# BILLING SWEEPS
# =============================================================================

@click.group('billing')
def billing_group():
    """Time-based billing sweeps."""


def _sweep_targets(slug):
    query = db.session.query(Tenant).filter_by(is_active=True)
    if slug:
        query = query.filter_by(slug=slug.strip().lower())
    tenants = query.order_by(Tenant.id.asc()).all()
    if slug and not tenants:
        raise click.ClickException(f"Tenant '{slug}' not found")
    return [(t.id, t.slug) for t in tenants]


def _parse_as_of(value):
    if not value:
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--as-of") from None


@billing_group.command('expire-quotes')
@click.option('--tenant', 'slug', help='Only this tenant (slug)')
@click.option('--as-of', help='Cutoff (ISO-8601); defaults to now')
@with_appcontext
def expire_quotes_cli(slug, as_of):
    """Expire sent quotes whose valid_until has passed."""
    cutoff = _parse_as_of(as_of)
    total = 0
    for tenant_id, tenant_slug in _sweep_targets(slug):
        try:
            expired = quote_service.expire_quotes(tenant_id, as_of=cutoff, actor_id=SWEEP_ACTOR)
        except BillingError as e:
            click.echo(f"FAIL {tenant_slug}: {e.message}")
            continue
        total += len(expired)
        for quote in expired:
            click.echo(f"   {tenant_slug}: {quote.quote_number} expired")
    click.echo(f"PASS Expired {total} quote(s)")


@billing_group.command('mark-overdue')
@click.option('--tenant', 'slug', help='Only this tenant (slug)')
@click.option('--as-of', help='Cutoff (ISO-8601); defaults to now')
@with_appcontext
def mark_overdue_cli(slug, as_of):
    """Mark pending invoices past their due date as overdue."""
    cutoff = _parse_as_of(as_of)
    total = 0
    for tenant_id, tenant_slug in _sweep_targets(slug):
        try:
            overdue = invoice_service.mark_overdue_invoices(tenant_id, as_of=cutoff, actor_id=SWEEP_ACTOR)
        except BillingError as e:
            click.echo(f"FAIL {tenant_slug}: {e.message}")
            continue
        total += len(overdue)
        for invoice in overdue:
            click.echo(f"   {tenant_slug}: {invoice.invoice_number} overdue")
    click.echo(f"PASS Marked {total} invoice(s) overdue")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)  # Multi-tenant management
    app.cli.add_command(billing_group)
