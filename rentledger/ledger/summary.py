"""Per-tenant finance summary derived from ledger state.

Nothing here is persisted. The summary reads committed rows only, so a
payment that is being written concurrently is either fully counted or not
counted at all.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from rentledger.extensions import db
from rentledger.models import Adjustment, Invoice, Payment, Tenant
from rentledger.money import ZERO, as_float, format_kes, money_sum, to_money
from rentledger.utils.periods import BillingPeriod, current_period


class FinanceStatus(str, enum.Enum):
    CLEARED = "Cleared"
    OVERDUE = "Overdue"
    PREPAID = "Prepaid"

    @classmethod
    def for_balance(cls, balance: Decimal) -> "FinanceStatus":
        if balance > ZERO:
            return cls.OVERDUE
        if balance < ZERO:
            return cls.PREPAID
        return cls.CLEARED


@dataclass(frozen=True)
class FinanceSummary:
    tenant_id: int
    tenant_name: str
    unit_number: Optional[str]
    period: str
    current_month_due: Decimal
    amount_paid_mtd: Decimal
    arrears_to_date: Decimal
    balance_now: Decimal
    status: FinanceStatus

    def serialize(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "tenant_name": self.tenant_name,
            "unit_number": self.unit_number,
            "period": self.period,
            "current_month_due": as_float(self.current_month_due),
            "amount_paid_mtd": as_float(self.amount_paid_mtd),
            "arrears_to_date": as_float(self.arrears_to_date),
            "balance_now": as_float(self.balance_now),
            "balance_display": format_kes(self.balance_now),
            "status": self.status.value,
        }


def _current_month_due(tenant: Tenant, invoices: List[Invoice], period: BillingPeriod) -> Decimal:
    current = [inv.amount_due for inv in invoices if inv.period_key == period.key]
    if current:
        return money_sum(current)
    lease = tenant.current_lease
    if lease is not None and lease.effective_rent is not None:
        return to_money(lease.effective_rent)
    return ZERO


def compute_finance_summary(tenant: Tenant, now: Optional[datetime] = None, session=None) -> FinanceSummary:
    """Derive the tenant's position for the billing month containing ``now``.

    arrears = prior-period charges + net adjustments - payments before the
    period start; balance = arrears + this month's due - paid this month.
    """
    session = session or db.session
    period = current_period(now)
    start = period.start

    invoices = session.query(Invoice).filter(Invoice.tenant_id == tenant.id).all()
    adjustments = session.query(Adjustment).filter(Adjustment.tenant_id == tenant.id).all()
    payments = (
        session.query(Payment)
        .filter(Payment.tenant_id == tenant.id, Payment.status == "paid")
        .all()
    )

    prior_charges = money_sum(inv.amount_due for inv in invoices if inv.period_key < period.key)
    net_adjustments = money_sum(adj.signed_amount for adj in adjustments)
    paid_before = money_sum(p.amount for p in payments if p.paid_at < start)
    paid_mtd = money_sum(p.amount for p in payments if period.contains(p.paid_at))

    arrears = prior_charges + net_adjustments - paid_before
    due = _current_month_due(tenant, invoices, period)
    balance = arrears + due - paid_mtd

    unit = tenant.current_unit
    return FinanceSummary(
        tenant_id=tenant.id,
        tenant_name=tenant.full_name,
        unit_number=unit.unit_number if unit else None,
        period=period.label,
        current_month_due=due,
        amount_paid_mtd=paid_mtd,
        arrears_to_date=arrears,
        balance_now=balance,
        status=FinanceStatus.for_balance(balance),
    )


def compute_all_summaries(now: Optional[datetime] = None, session=None) -> List[FinanceSummary]:
    session = session or db.session
    tenants = session.query(Tenant).order_by(Tenant.last_name, Tenant.first_name, Tenant.id).all()
    return [compute_finance_summary(tenant, now, session=session) for tenant in tenants]
