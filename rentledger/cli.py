import json

import click
from flask.cli import AppGroup

from rentledger.ledger.billing import run_billing_cycle
from rentledger.ledger.cache import get_summary_cache
from rentledger.utils.periods import parse_period

ledger_cli = AppGroup("ledger", help="Tenant ledger maintenance.")


@ledger_cli.command("bill-month")
@click.option("--month", default=None, help="Billing month as YYYY-MM (default: current month).")
def bill_month(month):
    """Issue rent invoices for every active lease."""
    try:
        period = parse_period(month)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--month")
    result = run_billing_cycle(period)
    click.echo(f"{result.period}: {len(result.generated)} invoices generated, {len(result.skipped)} skipped")


@ledger_cli.command("summary")
@click.argument("tenant_id", type=int)
def summary(tenant_id):
    """Print a tenant's finance summary as JSON."""
    click.echo(json.dumps(get_summary_cache().get_for_tenant_id(tenant_id).serialize(), indent=2))
