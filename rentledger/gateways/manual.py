"""Counter payments: cash or cheque taken in person, paid on entry."""
import logging
from decimal import Decimal

from rentledger.extensions import db
from rentledger.models import PaymentAttempt
from rentledger.utils.periods import utcnow

from .base import InitiateResult, PaymentRequest, StatusResult, load_attempt, new_handle, require_amount, stored_status

logger = logging.getLogger(__name__)


class ManualGateway:
    name = "manual"
    min_amount = Decimal("0.01")
    poll_interval = 0
    max_polls = 1
    timeout_seconds = 0

    @classmethod
    def from_config(cls, config):
        return cls()

    def initiate(self, request: PaymentRequest) -> InitiateResult:
        amount = require_amount(request.amount, self.min_amount)
        attempt = PaymentAttempt(
            handle=new_handle(self.name),
            provider=self.name,
            tenant_id=request.tenant_id,
            unit_id=request.unit_id,
            amount=amount,
            msisdn=request.msisdn,
            narrative=request.narrative,
            status="paid",
            settled_at=utcnow(),
        )
        db.session.add(attempt)
        db.session.commit()
        logger.info("Manual payment %s taken for tenant %s KES %s", attempt.handle, request.tenant_id, amount)
        return InitiateResult(handle=attempt.handle, message="Payment recorded", status="paid")

    def check_status(self, handle: str) -> StatusResult:
        return stored_status(load_attempt(handle, self.name))
