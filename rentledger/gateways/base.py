"""Shared shapes for payment gateway adapters.

Adapters are plain classes that satisfy ``PaymentGateway`` structurally.
They persist ``PaymentAttempt`` rows and never touch the ledger.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Optional, Protocol

from rentledger.errors import GatewayError, NotFoundError
from rentledger.extensions import db
from rentledger.models import PaymentAttempt
from rentledger.money import ZERO, to_money

AttemptStatus = Literal["pending", "paid", "failed"]

# 07XXXXXXXX, 01XXXXXXXX, 2547XXXXXXXX, +2541XXXXXXXX, 7XXXXXXXX
MSISDN_PATTERN = re.compile(r"^(?:\+?254|0)?([71]\d{8})$")


@dataclass(frozen=True)
class PaymentRequest:
    tenant_id: int
    amount: Decimal
    unit_id: Optional[int] = None
    msisdn: Optional[str] = None
    narrative: Optional[str] = None
    account_reference: Optional[str] = None


@dataclass(frozen=True)
class InitiateResult:
    handle: str
    message: str
    status: AttemptStatus = "pending"

    def serialize(self):
        return {"payment_id": self.handle, "message": self.message, "status": self.status}


@dataclass(frozen=True)
class StatusResult:
    status: AttemptStatus
    notes: Optional[str] = None

    @property
    def is_terminal(self):
        return self.status in ("paid", "failed")

    def serialize(self):
        return {"status": self.status, "notes": self.notes}


class PaymentGateway(Protocol):
    name: str
    poll_interval: float
    max_polls: int
    timeout_seconds: float

    def initiate(self, request: PaymentRequest) -> InitiateResult: ...

    def check_status(self, handle: str) -> StatusResult: ...


def normalize_msisdn(value: Optional[str]) -> str:
    """Return a Kenyan mobile number as 254XXXXXXXXX or raise ValueError."""
    cleaned = re.sub(r"[\s\-()]", "", str(value or ""))
    match = MSISDN_PATTERN.match(cleaned)
    if not match:
        raise ValueError(f"invalid phone number {value!r}")
    return "254" + match.group(1)


def require_msisdn(value):
    try:
        return normalize_msisdn(value)
    except ValueError as e:
        raise GatewayError(str(e), status_code=422)


def require_amount(value, minimum):
    try:
        amount = to_money(value)
    except ValueError as e:
        raise GatewayError(str(e), status_code=422)
    if amount <= ZERO or amount < minimum:
        raise GatewayError(f"amount must be at least KES {minimum}", status_code=422)
    return amount


def new_handle(provider):
    return f"{provider}_{uuid.uuid4().hex[:20]}"


def load_attempt(handle, provider=None):
    query = db.session.query(PaymentAttempt).filter(PaymentAttempt.handle == handle)
    if provider:
        query = query.filter(PaymentAttempt.provider == provider)
    # Callbacks may have settled the row since this session last read it
    attempt = query.populate_existing().first()
    if attempt is None:
        raise NotFoundError(f"payment attempt {handle} not found")
    return attempt


def stored_status(attempt):
    return StatusResult(attempt.status, attempt.notes)
