from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta
from flask import current_app, has_app_context

DEFAULT_TIMEZONE = "Africa/Nairobi"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def billing_timezone() -> ZoneInfo:
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get("BILLING_TIMEZONE", DEFAULT_TIMEZONE)
    return ZoneInfo(name)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass a datetime through) to naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return to_naive_utc(isoparse(str(value)))
    except ValueError:
        raise ValueError(f"invalid timestamp: {value!r}")


@dataclass(frozen=True)
class BillingPeriod:
    year: int
    month: int
    tz: ZoneInfo

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def key(self):
        return (self.year, self.month)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def start(self) -> datetime:
        local = datetime(self.year, self.month, 1, tzinfo=self.tz)
        return to_naive_utc(local)

    @property
    def end(self) -> datetime:
        return self.next().start

    def next(self) -> "BillingPeriod":
        d = self.first_day + relativedelta(months=1)
        return BillingPeriod(d.year, d.month, self.tz)

    def previous(self) -> "BillingPeriod":
        d = self.first_day - relativedelta(months=1)
        return BillingPeriod(d.year, d.month, self.tz)

    def due_date(self, due_day: int = 1) -> date:
        day = min(max(int(due_day or 1), 1), 28)
        return date(self.year, self.month, day)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def current_period(now: Optional[datetime] = None) -> BillingPeriod:
    """The billing month containing ``now`` (naive UTC) in the billing timezone."""
    tz = billing_timezone()
    moment = now or utcnow()
    local = moment.replace(tzinfo=timezone.utc).astimezone(tz)
    return BillingPeriod(local.year, local.month, tz)


def parse_period(value: Optional[str]) -> BillingPeriod:
    """Resolve ``YYYY-MM`` to a BillingPeriod; empty means the current month."""
    if not value:
        return current_period()
    try:
        year, month = (int(part) for part in str(value).split("-", 1))
        date(year, month, 1)
    except ValueError:
        raise ValueError(f"invalid period {value!r}, expected YYYY-MM")
    return BillingPeriod(year, month, billing_timezone())
