from .machine import AttemptState, PaymentReconciliation
from .service import ReconciliationService, get_reconciliation_service, record_attempt_payment

__all__ = [
    "AttemptState",
    "PaymentReconciliation",
    "ReconciliationService",
    "get_reconciliation_service",
    "record_attempt_payment",
]
