# Overview: Flask CLI command groups for schema repair, ledger inspection and installment planning.

# backend/storeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to storeledger (PowerShell: $env:FLASK_APP="storeledger").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask schema upgrade
#   Create missing tables and apply pending schema guard steps.
# - python -m flask schema status
#   List guard steps with applied/pending state.
#
# Ledger inspection:
# - python -m flask ledger balance 7 --as-of 2024-03-01
#   Customer balance at the end of a day (or now when --as-of is omitted).
#
# Installments:
# - python -m flask installments plan --price 12000000 --down-payment 2000000 --rate 2 --periods 12
#   Print a plan with the configured rounding granularity and tolerance.
#
# Settings:
# - python -m flask settings set installments.granularity 100000
#   Override a money rule without restarting the server.

import click
from flask.cli import with_appcontext

from .errors import MigrationError, StoreLedgerError
from .extensions import db
from .services import installment_service, ledger_service, settings_service
from .services.schema_guard import MIGRATION_STEPS, applied_steps, run_schema_guard
from .validation import percent_to_bps
from storeledger.time_utils import parse_iso_date


@click.group('schema')
def schema_group():
    """Schema guard commands."""


@schema_group.command('upgrade')
@with_appcontext
def schema_upgrade():
    """Create missing tables and rebuild legacy ones."""
    try:
        recorded = run_schema_guard(db.engine, db.metadata)
    except MigrationError as e:
        raise click.ClickException(f"{e} {e.details}")

    if not recorded:
        click.echo("PASS Schema already current")
        return
    for name in recorded:
        click.echo(f"PASS Recorded {name}")


@schema_group.command('status')
@with_appcontext
def schema_status():
    """Show every guard step and whether it has been recorded."""
    done = set(applied_steps(db.engine))
    for step in MIGRATION_STEPS:
        state = "applied" if step.name in done else "pending"
        click.echo(f"{step.name:<45} {step.table:<28} {state}")


@click.group('ledger')
def ledger_group():
    """Customer ledger inspection."""


@ledger_group.command('balance')
@click.argument('customer_id', type=int)
@click.option('--as-of', 'as_of', default=None, help='Business date (YYYY-MM-DD), inclusive')
@with_appcontext
def ledger_balance(customer_id, as_of):
    """Print a customer's balance as of a date."""
    try:
        as_of_date = parse_iso_date(as_of)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")

    balance = ledger_service.balance_as_of(customer_id, as_of_date)
    click.echo(f"Customer {customer_id} balance: {balance}")


@click.group('installments')
def installments_group():
    """Installment planning."""


@installments_group.command('plan')
@click.option('--price', type=int, required=True, help='Post-discount sale price')
@click.option('--down-payment', type=int, default=0, show_default=True)
@click.option('--rate', default="0", show_default=True, help='Monthly interest rate in percent')
@click.option('--periods', type=int, default=None)
@click.option('--period-amount', type=int, default=None)
@click.option('--override', is_flag=True, help='Accept a schedule outside the tolerance')
@click.option('--schedule/--no-schedule', default=False, help='Print due dates starting next month')
@with_appcontext
def installments_plan(price, down_payment, rate, periods, period_amount, override, schedule):
    """Compute and print an installment plan."""
    rules = settings_service.get_money_rules()
    try:
        plan = installment_service.compute_installment_plan(
            price,
            periods=periods,
            period_amount=period_amount,
            monthly_rate_bps=percent_to_bps("rate", rate),
            down_payment=down_payment,
            granularity=rules.granularity,
            tolerance_floor=rules.tolerance_floor,
            override=override,
        )
    except StoreLedgerError as e:
        raise click.ClickException(f"{e} {e.details}")

    click.echo(f"Financed total: {plan.financed_total}")
    click.echo(f"Remaining debt: {plan.remaining}")
    click.echo(f"Periods:        {plan.period_count} x {plan.period_amount}")
    click.echo(f"Tolerance:      {plan.tolerance}")
    if not plan.within_tolerance:
        click.echo("WARN  Schedule is outside the tolerance (override)")

    if schedule:
        from .services.installment_service import build_schedule
        from storeledger.time_utils import add_months, today

        for number, due_date, amount in build_schedule(plan, add_months(today(), 1)):
            click.echo(f"  {number:>3}  {due_date.isoformat()}  {amount}")


@click.group('settings')
def settings_group():
    """Store-wide settings."""


@settings_group.command('set')
@click.argument('key', type=click.Choice([settings_service.KEY_GRANULARITY, settings_service.KEY_TOLERANCE_FLOOR]))
@click.argument('value')
@with_appcontext
def settings_set(key, value):
    """Override a money rule; an empty value falls back to app config."""
    try:
        row = settings_service.set_setting(key, value or None)
    except settings_service.SettingsError as e:
        raise click.ClickException(str(e))
    rules = settings_service.get_money_rules()
    click.echo(f"PASS {row.key} = {row.value!r} (granularity={rules.granularity}, floor={rules.tolerance_floor})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(schema_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(installments_group)
    app.cli.add_command(settings_group)
