"""Monthly rent invoicing for every active lease."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from rentledger.extensions import db
from rentledger.ledger.store import LedgerStore
from rentledger.models import Invoice, Lease
from rentledger.money import ZERO, to_money
from rentledger.utils.periods import BillingPeriod, current_period

logger = logging.getLogger(__name__)


@dataclass
class BillingRunResult:
    period: str
    generated: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)

    def serialize(self):
        return {
            "period": self.period,
            "generated": len(self.generated),
            "skipped": len(self.skipped),
            "invoice_ids": self.generated,
        }


def run_billing_cycle(period: Optional[BillingPeriod] = None, store: Optional[LedgerStore] = None) -> BillingRunResult:
    """Issue one auto-billing invoice per active lease; safe to run twice."""
    period = period or current_period()
    store = store or LedgerStore()
    result = BillingRunResult(period=period.label)

    leases = db.session.query(Lease).filter(Lease.status == "active").order_by(Lease.id).all()
    for lease in leases:
        rent = lease.effective_rent
        if rent is None or to_money(rent) <= ZERO:
            logger.warning("Lease %s has no rent amount, not billed for %s", lease.id, period.label)
            result.skipped.append(lease.tenant_id)
            continue

        key = f"auto-billing:{lease.tenant_id}:{period.label}"
        if db.session.query(Invoice.id).filter_by(billing_key=key).first() is not None:
            result.skipped.append(lease.tenant_id)
            continue

        invoice = store.issue_invoice(
            lease.tenant_id,
            period.year,
            period.month,
            rent,
            unit_id=lease.unit_id,
            lease_id=lease.id,
            due_date=period.due_date(lease.payment_due_day),
            description=f"Rent {period.label}",
            source="auto-billing",
        )
        result.generated.append(invoice.id)

    logger.info("Billing run %s: %d generated, %d skipped",
                period.label, len(result.generated), len(result.skipped))
    return result
