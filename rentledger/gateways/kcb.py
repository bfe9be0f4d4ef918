"""KCB paybill sandbox.

No network calls: an attempt waits for the KCB webhook, the simulate
endpoint, or (when configured) settles itself after a number of checks.
"""
import logging
import uuid
from decimal import Decimal

from rentledger.errors import ValidationError
from rentledger.extensions import db
from rentledger.models import PaymentAttempt

from .base import (
    InitiateResult,
    PaymentRequest,
    StatusResult,
    load_attempt,
    new_handle,
    require_amount,
    require_msisdn,
    stored_status,
)

logger = logging.getLogger(__name__)


class KcbSandboxGateway:
    name = "kcb"
    min_amount = Decimal("10")

    def __init__(self, poll_interval=3, max_polls=100, timeout_seconds=300, auto_settle_polls=0):
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout_seconds = timeout_seconds
        self.auto_settle_polls = auto_settle_polls

    @classmethod
    def from_config(cls, config):
        return cls(
            poll_interval=config.get("KCB_SANDBOX_POLL_INTERVAL", 3),
            max_polls=config.get("KCB_SANDBOX_MAX_POLLS", 100),
            timeout_seconds=config.get("KCB_SANDBOX_TIMEOUT_SECONDS", 300),
            auto_settle_polls=config.get("KCB_SANDBOX_AUTO_SETTLE_POLLS", 0),
        )

    def initiate(self, request: PaymentRequest) -> InitiateResult:
        amount = require_amount(request.amount, self.min_amount)
        msisdn = require_msisdn(request.msisdn) if request.msisdn else None

        attempt = PaymentAttempt(
            handle=new_handle(self.name),
            provider=self.name,
            tenant_id=request.tenant_id,
            unit_id=request.unit_id,
            amount=amount,
            msisdn=msisdn,
            narrative=request.narrative,
            status="pending",
        )
        db.session.add(attempt)
        db.session.commit()
        logger.info("KCB sandbox attempt %s opened for tenant %s KES %s",
                    attempt.handle, request.tenant_id, amount)
        return InitiateResult(
            handle=attempt.handle,
            message=f"Pay KES {amount} to the KCB paybill using account {attempt.handle}",
            status="pending",
        )

    def check_status(self, handle: str) -> StatusResult:
        attempt = load_attempt(handle, self.name)
        if attempt.is_terminal:
            return stored_status(attempt)

        attempt.poll_count += 1
        if self.auto_settle_polls and attempt.poll_count >= self.auto_settle_polls:
            attempt.settle("paid", notes="Auto-settled by sandbox",
                           receipt_number=f"SIM{uuid.uuid4().hex[:10].upper()}")
            logger.info("KCB sandbox attempt %s auto-settled after %d checks", handle, attempt.poll_count)
        db.session.commit()
        return stored_status(attempt)

    def settle(self, handle, status="paid", receipt_number=None, notes=None):
        """Resolve a pending attempt from a webhook or the simulator."""
        if status not in ("paid", "failed"):
            raise ValidationError("status must be 'paid' or 'failed'")
        attempt = load_attempt(handle, self.name)
        if attempt.settle(status, notes=notes, receipt_number=receipt_number):
            db.session.commit()
            logger.info("KCB sandbox attempt %s settled as %s", handle, status)
        return attempt
