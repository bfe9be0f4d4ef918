from datetime import date
from decimal import Decimal
from zoneinfo import ZoneInfo

from rentledger.ledger.billing import run_billing_cycle
from rentledger.ledger.store import LedgerStore
from rentledger.models import Invoice
from rentledger.utils.periods import BillingPeriod

OCTOBER = BillingPeriod(2026, 10, ZoneInfo("Africa/Nairobi"))


class TestBillingCycle:
    def test_one_invoice_per_active_lease(self, make_tenant):
        first = make_tenant(rent="20000", due_day=5)
        make_tenant(rent="15000")
        make_tenant(lease=False)

        result = run_billing_cycle(OCTOBER)

        assert len(result.generated) == 2
        invoice = Invoice.query.filter_by(tenant_id=first.id).one()
        assert invoice.amount_due == Decimal("20000.00")
        assert invoice.due_date == date(2026, 10, 5)
        assert invoice.source == "auto-billing"
        assert invoice.period_label == "2026-10"

    def test_second_run_is_a_no_op(self, make_tenant):
        make_tenant()
        run_billing_cycle(OCTOBER)

        result = run_billing_cycle(OCTOBER)

        assert result.generated == []
        assert len(result.skipped) == 1
        assert Invoice.query.count() == 1

    def test_lease_without_rent_is_skipped(self, make_tenant):
        make_tenant(rent=None)
        result = run_billing_cycle(OCTOBER)
        assert result.generated == []
        assert Invoice.query.count() == 0

    def test_credit_is_applied_to_new_rent(self, make_tenant):
        tenant = make_tenant(rent="20000")
        LedgerStore().record_payment(tenant.id, 25000, "mpesa", "portal")

        run_billing_cycle(OCTOBER)

        invoice = Invoice.query.filter_by(tenant_id=tenant.id).one()
        assert invoice.status == "paid"
        assert LedgerStore().unapplied_credit(tenant.id) == Decimal("5000.00")


class TestLedgerCommands:
    def test_bill_month(self, app, make_tenant):
        make_tenant()
        runner = app.test_cli_runner()

        result = runner.invoke(args=["ledger", "bill-month", "--month", "2026-10"])

        assert result.exit_code == 0
        assert "2026-10: 1 invoices generated, 0 skipped" in result.output

    def test_bill_month_bad_month(self, app):
        result = app.test_cli_runner().invoke(args=["ledger", "bill-month", "--month", "October"])
        assert result.exit_code != 0

    def test_summary(self, app, make_tenant):
        tenant = make_tenant(rent="20000")
        result = app.test_cli_runner().invoke(args=["ledger", "summary", str(tenant.id)])
        assert '"balance_now": 20000.0' in result.output
