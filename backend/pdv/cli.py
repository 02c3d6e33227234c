# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/pdv/cli.py
# Commands Legend (run from the backend directory, FLASK_APP=wsgi.py):
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask users create --username caixa1 --email caixa1@pdv.local --password "Senha1234"
#   Create an operator (prompts if options are omitted).
# - python -m flask cash status
#   Show the open cash session and its expected balance.
# - python -m flask stock retry-pending
#   Replay stock ledger calls queued for reconciliation.

import click
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .money import cents_to_amount
from .services import auth_service, cash_session_service, sales_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('users')
def users_group():
    """Operator account commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_user_cli(username, email, password):
    """
    Create a new operator.

    Password: minimum 8 characters with at least one letter and one digit.
    """
    try:
        user = auth_service.create_user(username, email, password)
    except ServiceError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user {user.username} (ID: {user.id})")


@click.group('cash')
def cash_group():
    """Cash drawer inspection commands."""


@cash_group.command('status')
@with_appcontext
def cash_status():
    """Show the active cash session and its derived balance."""
    session = cash_session_service.get_active_session()
    if session is None:
        click.echo("No open cash session")
        return

    balance = cash_session_service.compute_balance(session)
    click.echo(f"Session {session.id} opened at {session.opened_at:%Y-%m-%d %H:%M} by user {session.opened_by_user_id}")
    click.echo(f"  Initial:     {cents_to_amount(balance.initial_cents):.2f}")
    click.echo(f"  Sales:       {cents_to_amount(balance.sales_total_cents):.2f}")
    click.echo(f"  Withdrawals: {cents_to_amount(balance.withdrawals_cents):.2f}")
    click.echo(f"  Deposits:    {cents_to_amount(balance.deposits_cents):.2f}")
    click.echo(f"  Expected:    {cents_to_amount(balance.expected_cents):.2f}")


@click.group('stock')
def stock_group():
    """Stock reconciliation commands."""


@stock_group.command('retry-pending')
@with_appcontext
def retry_pending():
    """Replay stock ledger calls queued for reconciliation."""
    result = sales_service.retry_pending_reconciliations()
    click.echo(f"Applied: {result['applied']}  Still pending: {result['pending']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(cash_group)
    app.cli.add_command(stock_group)
