"""One payment attempt, from initiate through polling to a terminal state.

The machine owns the poll budget: ``poll_count`` against ``max_polls`` and
elapsed time against ``timeout_seconds``. Gateway and ledger calls are
synchronous, so they go through ``run_sync`` (a thread by default).
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from rentledger.errors import GatewayError, LedgerError, TimeoutExceeded, TransientPollError
from rentledger.gateways.base import PaymentGateway, PaymentRequest
from rentledger.money import as_float

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Could not confirm payment, check manually"
CANCELLED_MESSAGE = "Stopped checking, confirm the payment manually"
START_FAILED_MESSAGE = "Could not start the payment, please try again"


class AttemptState(str, enum.Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self):
        return self in (AttemptState.PAID, AttemptState.FAILED, AttemptState.TIMED_OUT)


def _to_thread(fn, *args):
    return asyncio.to_thread(fn, *args)


class PaymentReconciliation:
    def __init__(
        self,
        gateway: PaymentGateway,
        request: PaymentRequest,
        record: Callable[[str], int],
        *,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        run_sync: Callable[..., Awaitable[Any]] = _to_thread,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.request = request
        self._record = record
        self._run_sync = run_sync
        self._clock = clock

        self.poll_interval = gateway.poll_interval if poll_interval is None else poll_interval
        self.max_polls = gateway.max_polls if max_polls is None else max_polls
        self.timeout_seconds = gateway.timeout_seconds if timeout_seconds is None else timeout_seconds

        self.state = AttemptState.IDLE
        self.handle: Optional[str] = None
        self.message: Optional[str] = None
        self.poll_count = 0
        self.transient_errors = 0
        self.payment_id: Optional[int] = None
        self.cancelled = False
        self._started_at: Optional[float] = None

    def __repr__(self):
        return f"<PaymentReconciliation {self.gateway.name} {self.handle} {self.state.value}>"

    @property
    def is_terminal(self):
        return self.state.is_terminal

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def _transition(self, state, message=None):
        previous, self.state = self.state, state
        if message is not None:
            self.message = message
        logger.info("Attempt %s (%s): %s -> %s%s", self.handle or "-", self.gateway.name,
                    previous.value, state.value, f" ({self.message})" if self.message else "")

    async def initiate(self) -> AttemptState:
        if self.state is not AttemptState.IDLE:
            raise RuntimeError(f"attempt already {self.state.value}")
        self._transition(AttemptState.INITIATING)
        try:
            result = await self._run_sync(self.gateway.initiate, self.request)
        except GatewayError as e:
            self._transition(AttemptState.FAILED, e.message)
            return self.state

        self.handle = result.handle
        self._started_at = self._clock()
        if self.state is not AttemptState.INITIATING:
            # Cancelled while the request was in flight
            return self.state
        self.message = result.message
        if result.status == "paid":
            await self._commit_paid()
        elif result.status == "failed":
            self._transition(AttemptState.FAILED)
        else:
            self._transition(AttemptState.PENDING)
        return self.state

    async def poll_once(self) -> AttemptState:
        if self.state is not AttemptState.PENDING:
            return self.state
        try:
            result = await self._run_sync(self.gateway.check_status, self.handle)
        except TransientPollError as e:
            self.transient_errors += 1
            logger.warning("Attempt %s status check failed (%d in a row): %s",
                           self.handle, self.transient_errors, e.message)
            if self.state is AttemptState.PENDING and self.transient_errors >= self.max_polls:
                self._transition(AttemptState.TIMED_OUT, TIMEOUT_MESSAGE)
            return self.state

        if self.state is not AttemptState.PENDING:
            # Cancelled or timed out while the check was in flight
            return self.state
        self.transient_errors = 0
        self.poll_count += 1
        if result.status == "paid":
            await self._commit_paid()
        elif result.status == "failed":
            self._transition(AttemptState.FAILED, result.notes or "Payment failed")
        return self.state

    async def _commit_paid(self):
        try:
            self.payment_id = await self._run_sync(self._record, self.handle)
        except (LedgerError, SQLAlchemyError):
            logger.exception("Attempt %s was paid but the ledger write failed", self.handle)
            self._transition(AttemptState.TIMED_OUT, "Payment received but not recorded, reconcile manually")
            return
        self._transition(AttemptState.PAID, "Payment confirmed")

    def _deadline_reached(self):
        return self.poll_count >= self.max_polls or self.elapsed >= self.timeout_seconds

    async def run(self) -> AttemptState:
        """Initiate if needed, then poll until a terminal state."""
        if self.state is AttemptState.IDLE:
            await self.initiate()
        while self.state is AttemptState.PENDING:
            if self._deadline_reached():
                self._transition(AttemptState.TIMED_OUT, TIMEOUT_MESSAGE)
                break
            await asyncio.sleep(self.poll_interval)
            await self.poll_once()
        return self.state

    poll_until_settled = run

    def cancel(self):
        """Stop polling. The charge itself is not reversed at the provider."""
        if self.state.is_terminal:
            return False
        self.cancelled = True
        self._transition(AttemptState.TIMED_OUT, CANCELLED_MESSAGE)
        return True

    def abort(self, message):
        """End the attempt after an error outside the gateway contract.

        Without a handle nothing reached the provider, so the attempt failed.
        With one the charge may still complete, so it needs a manual check.
        """
        if self.state.is_terminal:
            return False
        self._transition(AttemptState.FAILED if self.handle is None else AttemptState.TIMED_OUT, message)
        return True

    def raise_for_state(self):
        if self.state is AttemptState.TIMED_OUT:
            raise TimeoutExceeded(self.message or TIMEOUT_MESSAGE)
        if self.state is AttemptState.FAILED:
            raise GatewayError(self.message or "Payment failed")

    def snapshot(self):
        return {
            "payment_id": self.handle,
            "provider": self.gateway.name,
            "tenant_id": self.request.tenant_id,
            "unit_id": self.request.unit_id,
            "amount": as_float(self.request.amount),
            "state": self.state.value,
            "message": self.message,
            "poll_count": self.poll_count,
            "max_polls": self.max_polls,
            "elapsed_seconds": round(self.elapsed, 1),
            "timeout_seconds": self.timeout_seconds,
            "ledger_payment_id": self.payment_id,
            "cancelled": self.cancelled,
        }
