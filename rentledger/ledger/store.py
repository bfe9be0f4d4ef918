"""Durable record of invoices, payments, allocations and adjustments.

Every write commits its own transaction. Writes for one tenant are
serialised by a process-wide lock plus row locks on the tenant's open
invoices, so ``amount_paid`` is never updated from a stale read.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from rentledger.errors import NotFoundError, ValidationError
from rentledger.extensions import db
from rentledger.ledger.entries import AdjustmentEntry, ChargeEntry, PaymentEntry
from rentledger.ledger.events import mark_changed
from rentledger.models import Adjustment, Invoice, Lease, Payment, PaymentAllocation, Tenant
from rentledger.models.adjustment import ADJUSTMENT_KINDS
from rentledger.models.invoice import INVOICE_SOURCES
from rentledger.models.payment import PAYMENT_METHODS, PAYMENT_SOURCES, PAYMENT_STATUSES
from rentledger.money import ZERO, money_sum, to_money
from rentledger.utils.periods import BillingPeriod, billing_timezone, current_period, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def _positive_amount(value, field="amount"):
    try:
        amount = to_money(value)
    except ValueError as e:
        raise ValidationError(f"{field}: {e}")
    if amount <= ZERO:
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def _require_id(value, field):
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def _optional_id(value, field):
    if value is None or value == "":
        return None
    return _require_id(value, field)


def _timestamp(value, field):
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise ValidationError(f"{field}: {e}")


class LedgerStore:
    _locks = {}
    _locks_guard = threading.Lock()

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @contextmanager
    def _tenant_lock(self, tenant_id):
        with self._locks_guard:
            lock = self._locks.setdefault(tenant_id, threading.Lock())
        with lock:
            yield

    def _require_tenant(self, tenant_id):
        tenant_id = _require_id(tenant_id, "tenant_id")
        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise ValidationError(f"tenant {tenant_id} does not exist")
        return tenant

    def _commit(self):
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # ============= PAYMENTS =============

    def find_payment(self, external_tx_id=None, gateway_reference=None):
        query = self.session.query(Payment)
        if external_tx_id:
            found = query.filter(Payment.external_tx_id == external_tx_id).first()
            if found:
                return found
        if gateway_reference:
            return query.filter(Payment.gateway_reference == gateway_reference).first()
        return None

    def record_payment(self, tenant_id, amount, method, source, *, unit_id=None,
                       external_tx_id=None, msisdn=None, paid_at=None, description=None,
                       notes=None, status="paid", gateway_reference=None):
        amount = _positive_amount(amount)
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"unknown payment method {method!r}")
        if source not in PAYMENT_SOURCES:
            raise ValidationError(f"unknown payment source {source!r}")
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"unknown payment status {status!r}")
        tenant = self._require_tenant(tenant_id)
        unit_id = _optional_id(unit_id, "unit_id")
        paid_at = _timestamp(paid_at, "paid_at") or utcnow()

        with self._tenant_lock(tenant.id):
            existing = self.find_payment(external_tx_id, gateway_reference)
            if existing is not None:
                logger.info("Duplicate payment ignored (tx=%s ref=%s), existing id %s",
                            external_tx_id, gateway_reference, existing.id)
                return existing

            payment = Payment(
                tenant_id=tenant.id,
                unit_id=unit_id,
                amount=amount,
                method=method,
                source=source,
                status=status,
                external_tx_id=external_tx_id or None,
                gateway_reference=gateway_reference or None,
                msisdn=msisdn,
                paid_at=paid_at,
                description=description,
                notes=notes,
                unapplied_amount=ZERO,
            )
            self.session.add(payment)
            if status == "paid":
                payment.settled_at = utcnow()
                self._allocate(payment)
            elif status == "failed":
                payment.settled_at = utcnow()
            mark_changed(self.session, tenant.id)
            try:
                self._commit()
            except IntegrityError:
                # Another writer recorded the same receipt first
                existing = self.find_payment(external_tx_id, gateway_reference)
                if existing is not None:
                    return existing
                raise

        logger.info("Recorded %s payment %s: tenant %s KES %s via %s/%s",
                    status, payment.id, tenant.id, amount, method, source)
        return payment

    def settle_payment(self, payment_id, status, *, external_tx_id=None, notes=None, paid_at=None):
        if status not in ("paid", "failed"):
            raise ValidationError("status must be 'paid' or 'failed'")
        payment_id = _require_id(payment_id, "payment_id")
        payment = self.session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"payment {payment_id} not found")

        with self._tenant_lock(payment.tenant_id):
            payment = self.session.get(Payment, payment_id, populate_existing=True, with_for_update=True)
            if payment.status != "pending":
                current = payment.status
                self.session.rollback()
                raise ValidationError(f"payment {payment_id} is already {current}")
            if status == "paid":
                if external_tx_id:
                    clash = self.find_payment(external_tx_id=external_tx_id)
                    if clash is not None and clash.id != payment.id:
                        self.session.rollback()
                        raise ValidationError(f"transaction {external_tx_id} is already recorded")
                    payment.external_tx_id = external_tx_id
                payment.status = "paid"
                payment.settled_at = utcnow()
                if paid_at:
                    payment.paid_at = _timestamp(paid_at, "paid_at")
                if notes:
                    payment.notes = notes
                self._allocate(payment)
            else:
                payment.mark_failed(notes)
            mark_changed(self.session, payment.tenant_id)
            self._commit()

        logger.info("Settled payment %s as %s", payment.id, status)
        return payment

    def _allocate(self, payment):
        """Apply a paid payment to open invoices, oldest period first."""
        remaining = to_money(payment.amount)
        query = (
            self.session.query(Invoice)
            .filter(Invoice.tenant_id == payment.tenant_id, Invoice.status != "paid")
        )
        if payment.unit_id is not None:
            query = query.filter(Invoice.unit_id == payment.unit_id)
        invoices = (
            query.order_by(Invoice.period_year, Invoice.period_month, Invoice.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        for invoice in invoices:
            if remaining <= ZERO:
                break
            applied = invoice.apply(remaining)
            if applied > ZERO:
                self.session.add(PaymentAllocation(payment=payment, invoice=invoice, amount=applied))
                remaining -= applied
        payment.unapplied_amount = remaining

    def list_payments(self, tenant_id=None, status=None, limit=100):
        query = self.session.query(Payment)
        if tenant_id is not None:
            query = query.filter(Payment.tenant_id == _require_id(tenant_id, "tenant_id"))
        if status:
            if status not in PAYMENT_STATUSES:
                raise ValidationError(f"unknown payment status {status!r}")
            query = query.filter(Payment.status == status)
        return query.order_by(Payment.paid_at.desc(), Payment.id.desc()).limit(self._bounded(limit)).all()

    def unapplied_credit(self, tenant_id):
        rows = (
            self.session.query(Payment.unapplied_amount)
            .filter(Payment.tenant_id == int(tenant_id), Payment.status == "paid")
            .all()
        )
        return money_sum(row[0] for row in rows)

    # ============= ADJUSTMENTS =============

    def record_adjustment(self, tenant_id, amount, kind, *, unit_id=None, reason=None, created_by=None):
        amount = _positive_amount(amount)
        if kind not in ADJUSTMENT_KINDS:
            raise ValidationError("kind must be 'debit' or 'credit'")
        tenant = self._require_tenant(tenant_id)

        adjustment = Adjustment(
            tenant_id=tenant.id,
            unit_id=_optional_id(unit_id, "unit_id"),
            amount=amount,
            kind=kind,
            reason=reason,
            created_by=created_by,
        )
        with self._tenant_lock(tenant.id):
            self.session.add(adjustment)
            mark_changed(self.session, tenant.id)
            self._commit()
        logger.info("Recorded %s adjustment %s: tenant %s KES %s", kind, adjustment.id, tenant.id, amount)
        return adjustment

    # ============= INVOICES =============

    def issue_invoice(self, tenant_id, period_year, period_month, amount_due, *, unit_id=None,
                      lease_id=None, due_date=None, description=None, source="manual-invoice"):
        amount_due = _positive_amount(amount_due, "amount_due")
        if source not in INVOICE_SOURCES:
            raise ValidationError(f"unknown invoice source {source!r}")
        try:
            date(int(period_year), int(period_month), 1)
        except (TypeError, ValueError):
            raise ValidationError("period_year/period_month do not name a calendar month")
        period = BillingPeriod(int(period_year), int(period_month), billing_timezone())
        tenant = self._require_tenant(tenant_id)
        lease_id = _optional_id(lease_id, "lease_id")
        unit_id = _optional_id(unit_id, "unit_id")
        if unit_id is None:
            lease = self.session.get(Lease, lease_id) if lease_id else tenant.current_lease
            if lease is not None:
                unit_id = lease.unit_id
                lease_id = lease_id or lease.id
        if isinstance(due_date, str):
            due_date = _timestamp(due_date, "due_date").date()
        elif isinstance(due_date, datetime):
            due_date = due_date.date()

        billing_key = f"{source}:{tenant.id}:{period.label}" if source == "auto-billing" else None

        with self._tenant_lock(tenant.id):
            if billing_key:
                existing = self.session.query(Invoice).filter_by(billing_key=billing_key).first()
                if existing is not None:
                    return existing

            invoice = Invoice(
                tenant_id=tenant.id,
                unit_id=unit_id,
                lease_id=lease_id,
                period_year=period.year,
                period_month=period.month,
                amount_due=amount_due,
                amount_paid=ZERO,
                status="open",
                source=source,
                billing_key=billing_key,
                due_date=due_date or period.due_date(),
                description=description or f"Rent {period.label}",
            )
            self.session.add(invoice)
            self._apply_credit(invoice)
            mark_changed(self.session, tenant.id)
            try:
                self._commit()
            except IntegrityError:
                existing = self.session.query(Invoice).filter_by(billing_key=billing_key).first() if billing_key else None
                if existing is not None:
                    return existing
                raise

        logger.info("Issued invoice %s: tenant %s %s KES %s (%s)",
                    invoice.id, tenant.id, period.label, amount_due, source)
        return invoice

    def _apply_credit(self, invoice):
        """Spend the tenant's unapplied credit on a new invoice, oldest payment first."""
        credits = (
            self.session.query(Payment)
            .filter(Payment.tenant_id == invoice.tenant_id,
                    Payment.status == "paid",
                    Payment.unapplied_amount > 0)
            .order_by(Payment.paid_at, Payment.id)
            .with_for_update()
            .all()
        )
        for payment in credits:
            if invoice.outstanding <= ZERO:
                break
            applied = invoice.apply(payment.unapplied_amount)
            if applied > ZERO:
                self.session.add(PaymentAllocation(payment=payment, invoice=invoice, amount=applied))
                payment.unapplied_amount = to_money(payment.unapplied_amount) - applied

    def get_active_invoice(self, tenant_id, now=None):
        period = current_period(now)
        return (
            self.session.query(Invoice)
            .filter_by(tenant_id=int(tenant_id), period_year=period.year, period_month=period.month)
            .order_by(Invoice.id)
            .first()
        )

    # ============= HISTORY =============

    def _bounded(self, limit):
        maximum = current_app.config.get("HISTORY_MAX_LIMIT", 500) if has_app_context() else 500
        if limit is None or limit == "":
            return DEFAULT_HISTORY_LIMIT
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError("limit must be an integer")
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        return min(limit, maximum)

    def list_history(self, tenant_id, unit_id=None, limit=DEFAULT_HISTORY_LIMIT):
        """Newest-first ledger entries, each carrying the balance as of that entry."""
        tenant_id = _require_id(tenant_id, "tenant_id")
        unit_id = _optional_id(unit_id, "unit_id")
        limit = self._bounded(limit)

        def scoped(query, model):
            query = query.filter(model.tenant_id == tenant_id)
            if unit_id is not None:
                query = query.filter(model.unit_id == unit_id)
            return query

        rows = []
        for invoice in scoped(self.session.query(Invoice), Invoice).all():
            rows.append((invoice.issued_at, 0, invoice.id, invoice))
        for adjustment in scoped(self.session.query(Adjustment), Adjustment).all():
            rows.append((adjustment.created_at, 1, adjustment.id, adjustment))
        for payment in scoped(self.session.query(Payment), Payment).all():
            rows.append((payment.paid_at, 2, payment.id, payment))
        rows.sort(key=lambda row: row[:3])

        balance = ZERO
        entries = []
        for occurred_at, _, _, record in rows:
            if isinstance(record, Invoice):
                balance += to_money(record.amount_due)
                entries.append(ChargeEntry(
                    id=record.id,
                    occurred_at=occurred_at,
                    amount=to_money(record.amount_due),
                    description=record.description or f"Rent {record.period_label}",
                    running_balance=balance,
                    period=record.period_label,
                    amount_paid=to_money(record.amount_paid or ZERO),
                    status=record.status,
                ))
            elif isinstance(record, Adjustment):
                balance += record.signed_amount
                entries.append(AdjustmentEntry(
                    id=record.id,
                    occurred_at=occurred_at,
                    amount=to_money(record.amount),
                    description=record.reason or f"{record.kind.title()} adjustment",
                    running_balance=balance,
                    adjustment_kind=record.kind,
                ))
            else:
                if record.status == "paid":
                    balance -= to_money(record.amount)
                entries.append(PaymentEntry(
                    id=record.id,
                    occurred_at=occurred_at,
                    amount=to_money(record.amount),
                    description=record.description or f"Payment via {record.method}",
                    running_balance=balance,
                    method=record.method,
                    source=record.source,
                    status=record.status,
                    external_tx_id=record.external_tx_id,
                ))

        entries.reverse()
        return entries[:limit]
