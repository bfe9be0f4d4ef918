"""Read-only projection of a tenant's ledger as a tagged union of entries."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from rentledger.money import as_float


@dataclass(frozen=True)
class ChargeEntry:
    id: int
    occurred_at: datetime
    amount: Decimal
    description: str
    running_balance: Decimal
    period: str
    amount_paid: Decimal
    status: str
    kind: Literal["charge"] = "charge"


@dataclass(frozen=True)
class PaymentEntry:
    id: int
    occurred_at: datetime
    amount: Decimal
    description: str
    running_balance: Decimal
    method: str
    source: str
    status: str
    external_tx_id: Optional[str]
    kind: Literal["payment"] = "payment"


@dataclass(frozen=True)
class AdjustmentEntry:
    id: int
    occurred_at: datetime
    amount: Decimal
    description: str
    running_balance: Decimal
    adjustment_kind: str
    kind: Literal["adjustment"] = "adjustment"


LedgerEntry = Union[ChargeEntry, PaymentEntry, AdjustmentEntry]


def serialize_entry(entry: LedgerEntry) -> dict:
    data = asdict(entry)
    data["occurred_at"] = entry.occurred_at.isoformat()
    for field in ("amount", "running_balance", "amount_paid"):
        if field in data:
            data[field] = as_float(data[field])
    return data
