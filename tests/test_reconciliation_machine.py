from decimal import Decimal

import pytest

from rentledger.errors import GatewayError, TimeoutExceeded, TransientPollError, ValidationError
from rentledger.gateways import InitiateResult, KcbSandboxGateway, ManualGateway, PaymentRequest, StatusResult
from rentledger.ledger.cache import get_summary_cache
from rentledger.models import Payment
from rentledger.reconciliation import AttemptState, PaymentReconciliation
from rentledger.reconciliation.machine import CANCELLED_MESSAGE, TIMEOUT_MESSAGE
from rentledger.reconciliation.service import record_attempt_payment


async def direct(fn, *args):
    return fn(*args)


class ScriptedGateway:
    """Answers status checks from a list of statuses or exceptions."""

    name = "scripted"
    poll_interval = 0
    max_polls = 5
    timeout_seconds = 60

    def __init__(self, script=(), initiate_status="pending", initiate_error=None):
        self.script = list(script)
        self.initiate_status = initiate_status
        self.initiate_error = initiate_error
        self.checks = 0
        self.on_check = None

    def initiate(self, request):
        if self.initiate_error:
            raise self.initiate_error
        return InitiateResult(handle="scripted_1", message="sent", status=self.initiate_status)

    def check_status(self, handle):
        self.checks += 1
        if self.on_check:
            self.on_check()
        step = self.script.pop(0) if self.script else "pending"
        if isinstance(step, Exception):
            raise step
        return StatusResult(step)


class Recorder:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, handle):
        self.calls.append(handle)
        if self.error:
            raise self.error
        return 42


def machine_for(gateway, record=None, **kwargs):
    request = PaymentRequest(tenant_id=1, amount=Decimal("1000"), msisdn="0712345678")
    return PaymentReconciliation(gateway, request, record or Recorder(), run_sync=direct, **kwargs)


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_pending_then_paid_records_once(self):
        record = Recorder()
        machine = machine_for(ScriptedGateway(["pending", "pending", "pending", "paid"]), record)

        state = await machine.run()

        assert state is AttemptState.PAID
        assert record.calls == ["scripted_1"]
        assert machine.payment_id == 42
        assert machine.poll_count == 4

    @pytest.mark.asyncio
    async def test_initiate_error_is_failed_without_record(self):
        record = Recorder()
        machine = machine_for(ScriptedGateway(initiate_error=GatewayError("invalid phone")), record)

        assert await machine.run() is AttemptState.FAILED
        assert machine.message == "invalid phone"
        assert record.calls == []
        with pytest.raises(GatewayError):
            machine.raise_for_state()

    @pytest.mark.asyncio
    async def test_provider_failure(self):
        machine = machine_for(ScriptedGateway(["pending", "failed"]))
        assert await machine.run() is AttemptState.FAILED

    @pytest.mark.asyncio
    async def test_poll_ceiling_times_out(self):
        gateway = ScriptedGateway()
        record = Recorder()
        machine = machine_for(gateway, record, max_polls=3)

        assert await machine.run() is AttemptState.TIMED_OUT
        assert gateway.checks == 3
        assert machine.message == TIMEOUT_MESSAGE
        assert record.calls == []
        with pytest.raises(TimeoutExceeded):
            machine.raise_for_state()

    @pytest.mark.asyncio
    async def test_elapsed_time_ceiling(self):
        ticks = iter(range(0, 1000, 40))
        machine = machine_for(ScriptedGateway(), timeout_seconds=100, max_polls=50, clock=lambda: next(ticks))

        assert await machine.run() is AttemptState.TIMED_OUT
        assert machine.poll_count < 50

    @pytest.mark.asyncio
    async def test_transient_errors_do_not_use_the_budget(self):
        script = [TransientPollError("timeout"), TransientPollError("timeout"), "pending", "paid"]
        machine = machine_for(ScriptedGateway(script), max_polls=3)

        assert await machine.run() is AttemptState.PAID
        assert machine.poll_count == 2
        assert machine.transient_errors == 0

    @pytest.mark.asyncio
    async def test_consecutive_transient_errors_time_out(self):
        gateway = ScriptedGateway([TransientPollError("down")] * 10)
        machine = machine_for(gateway, max_polls=3)

        assert await machine.run() is AttemptState.TIMED_OUT
        assert gateway.checks == 3
        assert machine.poll_count == 0

    @pytest.mark.asyncio
    async def test_ledger_failure_after_payment(self):
        machine = machine_for(ScriptedGateway(["paid"]), Recorder(error=ValidationError("tenant gone")))

        assert await machine.run() is AttemptState.TIMED_OUT
        assert "reconcile manually" in machine.message
        assert machine.payment_id is None

    @pytest.mark.asyncio
    async def test_cancel_ignores_in_flight_result(self):
        gateway = ScriptedGateway(["paid"])
        record = Recorder()
        machine = machine_for(gateway, record)
        gateway.on_check = machine.cancel
        await machine.initiate()

        assert await machine.poll_once() is AttemptState.TIMED_OUT
        assert machine.message == CANCELLED_MESSAGE
        assert record.calls == []
        assert machine.cancel() is False

    @pytest.mark.asyncio
    async def test_terminal_state_is_stable(self):
        gateway = ScriptedGateway(["paid"])
        machine = machine_for(gateway)
        await machine.run()

        assert await machine.poll_once() is AttemptState.PAID
        assert gateway.checks == 1
        with pytest.raises(RuntimeError):
            await machine.initiate()

    @pytest.mark.asyncio
    async def test_snapshot(self):
        machine = machine_for(ScriptedGateway(["paid"]))
        await machine.run()
        snapshot = machine.snapshot()
        assert snapshot["payment_id"] == "scripted_1"
        assert snapshot["state"] == "paid"
        assert snapshot["amount"] == 1000.0
        assert snapshot["ledger_payment_id"] == 42


class TestWithLedger:
    @pytest.mark.asyncio
    async def test_sandbox_payment_lands_in_ledger(self, make_tenant):
        tenant = make_tenant()
        cache = get_summary_cache()
        before = cache.version(tenant.id)
        gateway = KcbSandboxGateway(poll_interval=0, max_polls=10, timeout_seconds=60, auto_settle_polls=4)
        machine = PaymentReconciliation(
            gateway,
            PaymentRequest(tenant_id=tenant.id, amount=Decimal("20000")),
            record_attempt_payment,
            run_sync=direct,
        )

        assert await machine.run() is AttemptState.PAID

        payment = Payment.query.one()
        assert payment.id == machine.payment_id
        assert payment.gateway_reference == machine.handle
        assert payment.source == "kcb-mpesa"
        assert payment.external_tx_id.startswith("SIM")
        assert cache.version(tenant.id) > before

    @pytest.mark.asyncio
    async def test_manual_payment_is_paid_immediately(self, make_tenant):
        tenant = make_tenant()
        machine = PaymentReconciliation(
            ManualGateway(),
            PaymentRequest(tenant_id=tenant.id, amount=Decimal("5000")),
            record_attempt_payment,
            run_sync=direct,
        )

        assert await machine.run() is AttemptState.PAID
        payment = Payment.query.one()
        assert (payment.method, payment.source) == ("cash", "counter")
        assert payment.amount == Decimal("5000.00")


class TestAbort:
    def test_abort_before_handle_is_failed(self):
        machine = machine_for(ScriptedGateway())
        assert machine.abort("boom") is True
        assert machine.state is AttemptState.FAILED

    @pytest.mark.asyncio
    async def test_abort_after_handle_needs_manual_check(self):
        machine = machine_for(ScriptedGateway())
        await machine.initiate()

        machine.abort(TIMEOUT_MESSAGE)

        assert machine.state is AttemptState.TIMED_OUT
        assert machine.abort("again") is False
