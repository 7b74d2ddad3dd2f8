# Overview: Flask CLI command group for bootstrap and inspection.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="backoffice:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply migrations (Flask-Migrate).
# - python -m flask backoffice init-db
#   DEV/TEST only: create every table straight from the models.
#
# Bootstrap:
# - python -m flask backoffice seed-branch --name "Downtown" --kind store
#   Create a branch (idempotent by name).
#
# Inspection:
# - python -m flask backoffice sessions --status pending_approval --limit 20
#   List recent cash sessions with optional filters.
# - python -m flask backoffice stock-alerts
#   List active variants at or below their minimum stock.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch
from .models.branches import BRANCH_KINDS
from .models.cash import SESSION_STATUSES


@click.group('backoffice')
def backoffice_group():
    """Back-office bootstrap and inspection commands."""


@backoffice_group.command('init-db')
@with_appcontext
def init_db_cli():
    """Create all tables (no migration history)."""
    db.create_all()
    click.echo("Tables created.")


@backoffice_group.command('seed-branch')
@click.option('--name', required=True, help='Branch name')
@click.option('--kind', type=click.Choice(BRANCH_KINDS), default='store', show_default=True)
@with_appcontext
def seed_branch_cli(name, kind):
    """
    Create a branch if it does not exist yet.

    Example:
        flask backoffice seed-branch --name "Downtown"
        flask backoffice seed-branch --name "Online" --kind site
    """
    existing = db.session.query(Branch).filter_by(name=name).first()
    if existing:
        click.echo(f"Branch already exists: id={existing.id} name={existing.name}")
        return

    branch = Branch(name=name, kind=kind, is_active=True)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"Created branch: id={branch.id} name={branch.name} kind={branch.kind}")


@backoffice_group.command('sessions')
@click.option('--branch-id', type=int, help='Filter by branch ID')
@click.option('--status', type=click.Choice(SESSION_STATUSES), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(branch_id, status, limit):
    """
    List cash sessions, newest first.

    Example:
        flask backoffice sessions
        flask backoffice sessions --branch-id 1
        flask backoffice sessions --status pending_approval
    """
    result = current_app.extensions["backoffice"].cash.list_sessions(
        branch_id=branch_id, status=status, page=1, per_page=limit,
    )
    sessions = result["items"]

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Branch':<20} {'Status':<18} {'Opened':<22} {'Balance':<12} {'Difference':<12}")
    click.echo("="*110)

    for s in sessions:
        branch = db.session.get(Branch, s["branch_id"])
        branch_name = branch.name if branch else "Unknown"

        balance_str = "-"
        if s["computed_balance_cents"] is not None:
            balance_str = f"{s['computed_balance_cents'] / 100:.2f}"

        difference_str = "-"
        if s["difference_cents"] is not None:
            difference_str = f"{s['difference_cents'] / 100:+.2f}"

        click.echo(f"{s['id']:<5} {branch_name[:20]:<20} {s['status']:<18} "
                   f"{s['opened_at'] or '-':<22} {balance_str:<12} {difference_str:<12}")

    click.echo("="*110 + "\n")


@backoffice_group.command('stock-alerts')
@with_appcontext
def stock_alerts_cli():
    """List active variants at or below their minimum stock."""
    alerts = current_app.extensions["backoffice"].stock.alerts()
    if not alerts:
        click.echo("No stock alerts.")
        return

    for a in alerts:
        click.echo(f"variant={a['id']:<6} sku={a['sku'] or '-':<16} stock={a['stock']:<5} "
                   f"min={a['min_stock']:<5} shortfall={a['shortfall']:<5} {a['product_name']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(backoffice_group)
