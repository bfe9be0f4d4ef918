import threading
from datetime import datetime
from decimal import Decimal

import pytest

from rentledger import create_app
from rentledger.config import TestingConfig
from rentledger.errors import NotFoundError, ValidationError
from rentledger.extensions import db
from rentledger.ledger.entries import AdjustmentEntry, ChargeEntry, PaymentEntry
from rentledger.ledger.store import LedgerStore
from rentledger.models import Invoice, Payment, PaymentAllocation, Tenant

from .conftest import NOW


@pytest.fixture
def store(app):
    return LedgerStore()


class TestRecordPayment:
    @pytest.mark.parametrize("amount", [0, "-5", "0.00"])
    def test_rejects_non_positive_amounts(self, store, make_tenant, amount):
        tenant = make_tenant()
        with pytest.raises(ValidationError):
            store.record_payment(tenant.id, amount, "cash", "counter")
        assert Payment.query.count() == 0

    def test_requires_existing_tenant(self, store):
        with pytest.raises(ValidationError):
            store.record_payment(None, 100, "cash", "counter")
        with pytest.raises(ValidationError):
            store.record_payment(999, 100, "cash", "counter")

    def test_rejects_unknown_method(self, store, make_tenant):
        tenant = make_tenant()
        with pytest.raises(ValidationError):
            store.record_payment(tenant.id, 100, "bitcoin", "counter")

    def test_oldest_invoice_is_reduced_first(self, store, make_tenant):
        tenant = make_tenant()
        later = store.issue_invoice(tenant.id, 2026, 9, 1000)
        earlier = store.issue_invoice(tenant.id, 2026, 8, 1000)

        payment = store.record_payment(tenant.id, 700, "cash", "counter", paid_at=NOW)

        assert db.session.get(Invoice, earlier.id).amount_paid == Decimal("700.00")
        assert db.session.get(Invoice, earlier.id).status == "partially_paid"
        assert db.session.get(Invoice, later.id).amount_paid == Decimal("0.00")
        assert payment.unapplied_amount == Decimal("0.00")

    def test_overpayment_becomes_unapplied_credit(self, store, make_tenant):
        tenant = make_tenant()
        invoice = store.issue_invoice(tenant.id, 2026, 10, 1000)

        payment = store.record_payment(tenant.id, 1500, "mpesa", "portal", paid_at=NOW)

        assert db.session.get(Invoice, invoice.id).status == "paid"
        assert db.session.get(Invoice, invoice.id).amount_paid == Decimal("1000.00")
        assert payment.unapplied_amount == Decimal("500.00")
        assert store.unapplied_credit(tenant.id) == Decimal("500.00")

    def test_pending_payment_is_not_allocated(self, store, make_tenant):
        tenant = make_tenant()
        invoice = store.issue_invoice(tenant.id, 2026, 10, 1000)

        store.record_payment(tenant.id, 1000, "bank", "import", status="pending")

        assert db.session.get(Invoice, invoice.id).amount_paid == Decimal("0.00")
        assert PaymentAllocation.query.count() == 0

    def test_duplicate_transaction_id_is_ignored(self, store, make_tenant):
        tenant = make_tenant()
        first = store.record_payment(tenant.id, 500, "mpesa", "c2b", external_tx_id="QJK4XYZ1")
        second = store.record_payment(tenant.id, 500, "mpesa", "c2b", external_tx_id="QJK4XYZ1")

        assert first.id == second.id
        assert Payment.query.count() == 1

    def test_duplicate_gateway_reference_is_ignored(self, store, make_tenant):
        tenant = make_tenant()
        store.record_payment(tenant.id, 500, "mpesa", "stk", gateway_reference="mpesa_abc")
        store.record_payment(tenant.id, 500, "mpesa", "stk", gateway_reference="mpesa_abc")
        assert Payment.query.count() == 1

    def test_unit_scoped_payment_skips_other_units(self, store, make_tenant):
        tenant = make_tenant()
        unit_id = tenant.current_unit.id
        other = store.issue_invoice(tenant.id, 2026, 8, 1000, unit_id=None)
        other.unit_id = None
        db.session.commit()
        scoped = store.issue_invoice(tenant.id, 2026, 9, 1000, unit_id=unit_id)

        store.record_payment(tenant.id, 400, "cash", "counter", unit_id=unit_id)

        assert db.session.get(Invoice, other.id).amount_paid == Decimal("0.00")
        assert db.session.get(Invoice, scoped.id).amount_paid == Decimal("400.00")


class TestSettlePayment:
    def test_pending_settles_once(self, store, make_tenant):
        tenant = make_tenant()
        invoice = store.issue_invoice(tenant.id, 2026, 10, 1000)
        payment = store.record_payment(tenant.id, 1000, "bank", "import", status="pending")

        settled = store.settle_payment(payment.id, "paid", external_tx_id="BANK-001")

        assert settled.status == "paid"
        assert settled.external_tx_id == "BANK-001"
        assert db.session.get(Invoice, invoice.id).status == "paid"
        with pytest.raises(ValidationError):
            store.settle_payment(payment.id, "failed")

    def test_failed_settlement_keeps_invoice_open(self, store, make_tenant):
        tenant = make_tenant()
        invoice = store.issue_invoice(tenant.id, 2026, 10, 1000)
        payment = store.record_payment(tenant.id, 1000, "bank", "import", status="pending")

        store.settle_payment(payment.id, "failed", notes="Cheque bounced")

        assert db.session.get(Payment, payment.id).notes == "Cheque bounced"
        assert db.session.get(Invoice, invoice.id).status == "open"

    def test_unknown_payment(self, store):
        with pytest.raises(NotFoundError):
            store.settle_payment(42, "paid")


class TestAdjustmentsAndInvoices:
    def test_adjustment_validation(self, store, make_tenant):
        tenant = make_tenant()
        with pytest.raises(ValidationError):
            store.record_adjustment(tenant.id, 500, "refund")
        with pytest.raises(ValidationError):
            store.record_adjustment(tenant.id, -500, "debit")

    def test_new_invoice_consumes_credit(self, store, make_tenant):
        tenant = make_tenant()
        payment = store.record_payment(tenant.id, 1500, "cash", "counter")
        assert payment.unapplied_amount == Decimal("1500.00")

        invoice = store.issue_invoice(tenant.id, 2026, 11, 1000)

        assert invoice.amount_paid == Decimal("1000.00")
        assert invoice.status == "paid"
        assert store.unapplied_credit(tenant.id) == Decimal("500.00")

    def test_invoice_defaults_to_current_unit(self, store, make_tenant):
        tenant = make_tenant()
        invoice = store.issue_invoice(tenant.id, 2026, 10, 1000)
        assert invoice.unit_id == tenant.current_unit.id
        assert invoice.lease_id == tenant.current_lease.id

    def test_invalid_month(self, store, make_tenant):
        tenant = make_tenant()
        with pytest.raises(ValidationError):
            store.issue_invoice(tenant.id, 2026, 13, 1000)

    def test_auto_billing_invoice_is_unique_per_period(self, store, make_tenant):
        tenant = make_tenant()
        first = store.issue_invoice(tenant.id, 2026, 10, 1000, source="auto-billing")
        second = store.issue_invoice(tenant.id, 2026, 10, 1000, source="auto-billing")
        assert first.id == second.id

    def test_active_invoice_is_for_current_period(self, store, make_tenant):
        tenant = make_tenant()
        store.issue_invoice(tenant.id, 2026, 9, 1000)
        current = store.issue_invoice(tenant.id, 2026, 10, 1000)
        assert store.get_active_invoice(tenant.id, now=NOW).id == current.id
        assert store.get_active_invoice(tenant.id, now=datetime(2026, 12, 5)) is None


class TestHistory:
    def test_payment_round_trip(self, store, make_tenant):
        tenant = make_tenant()
        paid_at = datetime(2026, 10, 3, 7, 45, 12)
        payment = store.record_payment(tenant.id, "12345.67", "mpesa", "portal", paid_at=paid_at)

        entries = [e for e in store.list_history(tenant.id) if isinstance(e, PaymentEntry)]

        assert len(entries) == 1
        assert entries[0].id == payment.id
        assert entries[0].amount == Decimal("12345.67")
        assert entries[0].occurred_at == paid_at

    def test_newest_first_with_running_balance(self, store, make_tenant):
        tenant = make_tenant()
        store.issue_invoice(tenant.id, 2026, 10, 1000)
        store.record_adjustment(tenant.id, 200, "debit", reason="Water")
        store.record_payment(tenant.id, 700, "cash", "counter")

        entries = store.list_history(tenant.id)

        assert [type(e) for e in entries] == [PaymentEntry, AdjustmentEntry, ChargeEntry]
        assert [e.running_balance for e in entries] == [
            Decimal("500.00"), Decimal("1200.00"), Decimal("1000.00"),
        ]
        assert entries[1].kind == "adjustment"

    def test_limit_bounds_the_result(self, store, make_tenant):
        tenant = make_tenant()
        for _ in range(5):
            store.record_payment(tenant.id, 10, "cash", "counter")
        assert len(store.list_history(tenant.id, limit=3)) == 3
        with pytest.raises(ValidationError):
            store.list_history(tenant.id, limit=0)


@pytest.fixture
def file_app(tmp_path):
    # Each writer thread gets its own connection, so the database has to be a file
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'ledger.db'}"

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    app.extensions["reconciliation"].shutdown()


class TestConcurrentWrites:
    def test_parallel_payments_for_one_tenant(self, file_app):
        tenant = Tenant(first_name="Achieng", last_name="Otieno", email="achieng@example.com")
        db.session.add(tenant)
        db.session.commit()
        store = LedgerStore()
        august = store.issue_invoice(tenant.id, 2026, 8, 1000)
        september = store.issue_invoice(tenant.id, 2026, 9, 1000)
        tenant_id, invoice_ids = tenant.id, (august.id, september.id)

        writers = 4
        barrier = threading.Barrier(writers)
        errors = []

        def pay():
            barrier.wait()
            with file_app.app_context():
                try:
                    LedgerStore().record_payment(tenant_id, 300, "mpesa", "portal")
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=pay) for _ in range(writers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        db.session.expire_all()
        paid = [db.session.get(Invoice, invoice_id).amount_paid for invoice_id in invoice_ids]
        assert paid == [Decimal("1000.00"), Decimal("200.00")]
        allocated = sum(a.amount for a in PaymentAllocation.query.all())
        assert allocated == Decimal("1200.00")
        assert Payment.query.filter_by(tenant_id=tenant_id).count() == writers
        assert store.unapplied_credit(tenant_id) == Decimal("0.00")
