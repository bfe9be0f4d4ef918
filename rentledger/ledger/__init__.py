from .billing import BillingRunResult, run_billing_cycle
from .cache import SummaryCache, get_summary_cache
from .entries import AdjustmentEntry, ChargeEntry, LedgerEntry, PaymentEntry, serialize_entry
from .events import ledger_changed, register_ledger_events
from .store import LedgerStore
from .summary import FinanceStatus, FinanceSummary, compute_all_summaries, compute_finance_summary

__all__ = [
    "AdjustmentEntry",
    "BillingRunResult",
    "ChargeEntry",
    "FinanceStatus",
    "FinanceSummary",
    "LedgerEntry",
    "LedgerStore",
    "PaymentEntry",
    "SummaryCache",
    "compute_all_summaries",
    "compute_finance_summary",
    "get_summary_cache",
    "ledger_changed",
    "register_ledger_events",
    "run_billing_cycle",
    "serialize_entry",
]
