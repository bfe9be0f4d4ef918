"""Runs reconciliation attempts on one background event loop."""
import asyncio
import logging
import threading
from datetime import timedelta

from flask import current_app

from rentledger.errors import LedgerError, NotFoundError, PaymentInProgressError, ValidationError
from rentledger.extensions import db
from rentledger.gateways import get_gateway
from rentledger.gateways.base import load_attempt
from rentledger.ledger.store import LedgerStore
from rentledger.models import PaymentAttempt
from rentledger.models.payment import PAYMENT_METHODS, PAYMENT_SOURCES
from rentledger.utils.periods import utcnow

from .machine import START_FAILED_MESSAGE, TIMEOUT_MESSAGE, PaymentReconciliation

logger = logging.getLogger(__name__)

# provider -> (ledger method, ledger source)
PROVIDER_LEDGER_DEFAULTS = {
    "mpesa": ("mpesa", "stk"),
    "kcb": ("mpesa", "kcb-mpesa"),
    "manual": ("cash", "counter"),
}

MAX_FINISHED_ATTEMPTS = 500


def record_attempt_payment(handle, method=None, source=None):
    """Write the ledger payment for a paid attempt. Idempotent on the handle."""
    attempt = load_attempt(handle)
    default_method, default_source = PROVIDER_LEDGER_DEFAULTS.get(attempt.provider, ("other", "portal"))
    payment = LedgerStore().record_payment(
        attempt.tenant_id,
        attempt.amount,
        method or default_method,
        source or default_source,
        unit_id=attempt.unit_id,
        external_tx_id=attempt.receipt_number,
        msisdn=attempt.msisdn,
        paid_at=attempt.settled_at,
        description=attempt.narrative or f"{attempt.provider.upper()} payment",
        gateway_reference=handle,
    )
    return payment.id


def ensure_no_pending_attempt(tenant_id, ignore=()):
    """Reject a new collection while one for the tenant is still inside its polling window."""
    pending = (
        db.session.query(PaymentAttempt)
        .filter(PaymentAttempt.tenant_id == tenant_id, PaymentAttempt.status == "pending")
        .all()
    )
    now = utcnow()
    for attempt in pending:
        if attempt.handle in ignore:
            continue
        window = get_gateway(attempt.provider).timeout_seconds
        if attempt.created_at >= now - timedelta(seconds=window):
            raise PaymentInProgressError(
                f"tenant {tenant_id} already has a payment in progress ({attempt.handle})"
            )


class ReconciliationService:
    def __init__(self, app=None):
        self.app = None
        self._attempts = []
        self._lock = threading.Lock()
        self._loop = None
        self._thread = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        app.extensions["reconciliation"] = self

    # ============= EVENT LOOP =============

    def _ensure_loop(self):
        with self._lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever, name="reconciliation-loop", daemon=True
                )
                self._thread.start()
            return self._loop

    def _run_sync(self, fn, *args):
        app = self.app

        def call():
            with app.app_context():
                return fn(*args)

        return asyncio.to_thread(call)

    def shutdown(self):
        with self._lock:
            loop, self._loop = self._loop, None
            thread, self._thread = self._thread, None
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=5)
            loop.close()

    # ============= ATTEMPTS =============

    def start(self, provider, request, *, method=None, source=None):
        """Initiate ``request`` through ``provider`` and keep polling it in the background.

        Blocks until the initiate call returns, or the initiate timeout passes,
        so the caller usually gets the handle.
        """
        if not self.app.config.get("RECONCILIATION_ENABLED", True):
            raise LedgerError("payment reconciliation is disabled", status_code=503)
        # Rejected here, before any charge is made
        if method is not None and method not in PAYMENT_METHODS:
            raise ValidationError(f"unknown payment method {method!r}")
        if source is not None and source not in PAYMENT_SOURCES:
            raise ValidationError(f"unknown payment source {source!r}")
        gateway = get_gateway(provider, self.app)
        machine = PaymentReconciliation(
            gateway,
            request,
            record=lambda handle: record_attempt_payment(handle, method, source),
            run_sync=self._run_sync,
        )
        with self._lock:
            for other in self._attempts:
                if other.request.tenant_id == request.tenant_id and not other.is_terminal:
                    raise PaymentInProgressError(
                        f"tenant {request.tenant_id} already has a payment in progress ({other.handle})"
                    )
            released = {m.handle for m in self._attempts if m.is_terminal}
            ensure_no_pending_attempt(request.tenant_id, ignore=released)
            self._attempts.append(machine)
            self._prune()

        initiated = threading.Event()
        asyncio.run_coroutine_threadsafe(self._drive(machine, initiated), self._ensure_loop())
        initiate_timeout = float(self.app.config.get("MPESA_HTTP_TIMEOUT", 15)) * 2 + 5
        if not initiated.wait(initiate_timeout):
            # Still followed in the background once the provider answers
            logger.warning("Initiate for tenant %s via %s is taking longer than %.0fs",
                           request.tenant_id, provider, initiate_timeout)
        return machine

    async def _drive(self, machine, initiated):
        """Initiate then poll; any unexpected error still ends the attempt."""
        try:
            await machine.initiate()
        except Exception:
            logger.exception("Initiate via %s failed for tenant %s", machine.gateway.name, machine.request.tenant_id)
            machine.abort(START_FAILED_MESSAGE if machine.handle is None else TIMEOUT_MESSAGE)
        finally:
            initiated.set()
        try:
            await machine.run()
        except Exception:
            logger.exception("Attempt %s stopped on an unexpected error", machine.handle)
            machine.abort(TIMEOUT_MESSAGE)

    def _prune(self):
        finished = [m for m in self._attempts if m.is_terminal]
        for machine in finished[:max(len(finished) - MAX_FINISHED_ATTEMPTS, 0)]:
            self._attempts.remove(machine)

    def get(self, handle):
        with self._lock:
            for machine in self._attempts:
                if machine.handle == handle:
                    return machine
        raise NotFoundError(f"no reconciliation running for {handle}")

    def cancel(self, handle):
        machine = self.get(handle)
        machine.cancel()
        return machine

    def reconcile_manually(self, provider, handle):
        """Recovery after a timeout: record the payment if the provider says it was paid."""
        gateway = get_gateway(provider, self.app)
        status = gateway.check_status(handle)
        result = {"payment_id": handle, "status": status.status, "notes": status.notes,
                  "recorded": False, "ledger_payment_id": None}
        if status.status != "paid":
            return result

        existing = LedgerStore().find_payment(gateway_reference=handle)
        if existing is not None:
            result["ledger_payment_id"] = existing.id
            return result

        result["ledger_payment_id"] = record_attempt_payment(handle)
        result["recorded"] = True
        logger.info("Attempt %s reconciled manually as ledger payment %s", handle, result["ledger_payment_id"])
        return result


def get_reconciliation_service():
    return current_app.extensions["reconciliation"]
