"""Provider notifications: Daraja STK callbacks, C2B confirmations, KCB paybill.

STK callbacks only settle the matching ``PaymentAttempt``; the reconciliation
machine writes the ledger. Paybill receipts (C2B / KCB) have no machine
behind them unless they pay a KCB sandbox attempt, so they are recorded in
the ledger here, idempotently by transaction id.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from rentledger.errors import ValidationError
from rentledger.extensions import db
from rentledger.ledger.store import LedgerStore
from rentledger.models import Lease, PaymentAttempt, Unit
from rentledger.money import to_money
from rentledger.utils.periods import billing_timezone, parse_timestamp, to_naive_utc

from .base import normalize_msisdn

logger = logging.getLogger(__name__)

STK_ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}


@dataclass(frozen=True)
class IncomingPayment:
    tx_id: Optional[str]
    amount: Decimal
    msisdn: Optional[str]
    account_ref: Optional[str]
    paid_at: Optional[datetime]
    source: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass
class IncomingResult:
    matched: bool
    duplicate: bool = False
    payment_id: Optional[int] = None
    tenant_id: Optional[int] = None
    attempt_handle: Optional[str] = None

    def serialize(self):
        return {
            "ok": True,
            "matched": self.matched,
            "duplicate": self.duplicate,
            "payment_id": self.payment_id,
            "tenant_id": self.tenant_id,
            "attempt": self.attempt_handle,
        }


def _first(body, *keys):
    for key in keys:
        value = body.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_provider_time(value) -> Optional[datetime]:
    """Parse ``YYYYMMDDHHMMSS`` (billing-local) or ISO-8601 into naive UTC."""
    if value in (None, ""):
        return None
    text = str(value).strip()
    if re.fullmatch(r"\d{14}", text):
        local = datetime.strptime(text, "%Y%m%d%H%M%S").replace(tzinfo=billing_timezone())
        return to_naive_utc(local)
    try:
        return parse_timestamp(text)
    except ValueError:
        logger.warning("Unparseable provider timestamp %r", value)
        return None


def _amount(value):
    if isinstance(value, str):
        value = re.sub(r"[^\d.]", "", value)
    try:
        return to_money(value)
    except ValueError:
        raise ValidationError(f"invalid amount {value!r}")


def _msisdn(value):
    if value in (None, ""):
        return None
    try:
        return normalize_msisdn(value)
    except ValueError:
        # Daraja hashes MSISDNs on some C2B products; keep whatever arrived
        return str(value)


def extract_house_number(account):
    """``8027591#A3-04`` -> ``A3-04``; an account with no ``#`` is returned as is."""
    if not account:
        return None
    parts = str(account).split("#")
    if len(parts) == 1:
        return parts[0].strip() or None
    return parts[1].strip() or None


# ============= M-PESA STK =============

def apply_stk_callback(payload):
    """Settle the attempt named by an STK callback. Returns the attempt or None."""
    body = payload.get("Body") if isinstance(payload, dict) else None
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        logger.warning("Ignoring STK callback without stkCallback: %r", payload)
        return None
    checkout_id = callback.get("CheckoutRequestID")
    if not checkout_id:
        logger.warning("Ignoring STK callback without CheckoutRequestID: %r", payload)
        return None
    code = str(callback.get("ResultCode"))
    description = callback.get("ResultDesc")

    attempt = (
        db.session.query(PaymentAttempt)
        .filter(PaymentAttempt.checkout_request_id == checkout_id)
        .populate_existing()
        .first()
    )
    if attempt is None:
        logger.warning("STK callback for unknown checkout %s (ResultCode %s)", checkout_id, code)
        return None

    metadata = callback.get("CallbackMetadata")
    raw_items = metadata.get("Item") if isinstance(metadata, dict) else None
    items = {item.get("Name"): item.get("Value") for item in raw_items or [] if isinstance(item, dict)}
    if code == "0":
        changed = attempt.settle("paid", notes=description, receipt_number=items.get("MpesaReceiptNumber"))
    else:
        changed = attempt.settle("failed", notes=description)
    if changed:
        db.session.commit()
        logger.info("STK callback settled %s as %s", attempt.handle, attempt.status)
    else:
        logger.info("STK callback for %s ignored, already %s", attempt.handle, attempt.status)
    return attempt


# ============= PAYBILL RECEIPTS =============

def normalize_c2b_payload(body) -> IncomingPayment:
    body = body or {}
    return IncomingPayment(
        tx_id=_first(body, "TransID", "TransRef", "tx_id"),
        amount=_amount(_first(body, "TransAmount", "amount") or 0),
        msisdn=_msisdn(_first(body, "MSISDN", "SenderMSISDN", "msisdn")),
        account_ref=_first(body, "BillRefNumber", "AccountReference", "account"),
        paid_at=parse_provider_time(_first(body, "TransTime", "paid_at")),
        source="c2b",
        raw=body,
    )


def normalize_kcb_payload(body) -> IncomingPayment:
    body = body or {}
    account = _first(body, "accountNumber", "BillRefNumber", "billRefNumber", "BusinessShortCodeAndAccount")
    return IncomingPayment(
        tx_id=_first(body, "transactionId", "TransID", "transId", "reference"),
        amount=_amount(_first(body, "amount", "Amount", "TransAmount", "transactionAmount") or 0),
        msisdn=_msisdn(_first(body, "msisdn", "MSISDN", "phoneNumber", "customerMsisdn")),
        account_ref=extract_house_number(account),
        paid_at=parse_provider_time(_first(body, "transactionTime", "TransTime", "timestamp")),
        source="kcb-mpesa",
        raw=body,
    )


def _tenant_for_unit_number(unit_number):
    """Resolve a paybill account (unit number) to (unit, active lease)."""
    unit = db.session.query(Unit).filter(Unit.unit_number == unit_number).first()
    if unit is None:
        return None, None
    lease = (
        db.session.query(Lease)
        .filter(Lease.unit_id == unit.id, Lease.status == "active")
        .order_by(Lease.start_date.desc())
        .first()
    )
    return unit, lease


def record_incoming_payment(incoming: IncomingPayment, store: Optional[LedgerStore] = None) -> IncomingResult:
    if not incoming.tx_id:
        raise ValidationError("transaction id is missing")
    if incoming.amount <= 0:
        raise ValidationError("amount must be greater than zero")
    store = store or LedgerStore()

    # A KCB sandbox attempt is paid by quoting its handle as the account
    if incoming.account_ref:
        attempt = (
            db.session.query(PaymentAttempt)
            .filter(PaymentAttempt.handle == incoming.account_ref, PaymentAttempt.provider == "kcb")
            .populate_existing()
            .first()
        )
        if attempt is not None:
            if attempt.settle("paid", notes=f"Paid via {incoming.source}", receipt_number=incoming.tx_id):
                db.session.commit()
                logger.info("Paybill receipt %s settled attempt %s", incoming.tx_id, attempt.handle)
            return IncomingResult(matched=True, tenant_id=attempt.tenant_id, attempt_handle=attempt.handle)

    existing = store.find_payment(external_tx_id=incoming.tx_id)
    if existing is not None:
        logger.info("Paybill receipt %s already recorded as payment %s", incoming.tx_id, existing.id)
        return IncomingResult(matched=True, duplicate=True, payment_id=existing.id, tenant_id=existing.tenant_id)

    unit, lease = _tenant_for_unit_number(incoming.account_ref) if incoming.account_ref else (None, None)
    if lease is None:
        logger.warning("Unmatched paybill receipt %s: KES %s account %r",
                       incoming.tx_id, incoming.amount, incoming.account_ref)
        return IncomingResult(matched=False)

    payment = store.record_payment(
        lease.tenant_id,
        incoming.amount,
        "mpesa",
        incoming.source,
        unit_id=unit.id,
        external_tx_id=incoming.tx_id,
        msisdn=incoming.msisdn,
        paid_at=incoming.paid_at,
        description=f"Paybill payment for {unit.unit_number}",
    )
    return IncomingResult(matched=True, payment_id=payment.id, tenant_id=payment.tenant_id)
